"""
Events module.

- Public event pages and registration (by id or short code)
- Admin approval, QR issuance and email delivery
- QR check-in (API and public /checkin/<token> page)
"""
