"""
AFIP electronic invoicing: WSAA access tickets, WSFEv1 CAE authorization and
gap-free voucher numbering.
"""
