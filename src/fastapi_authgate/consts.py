UNRESERVED_CHARACTERS = (
    "ABCDEFGHIJKLMNOPQRSTUVWXYZabcdefghijklmnopqrstuvwxyz0123456789-._~"
)
"""Characters allowed in a PKCE code verifier (RFC 7636, section 4.1)"""

MIN_VERIFIER_LENGTH = 43
MAX_VERIFIER_LENGTH = 128

AS_BASIC_AUTH_HEADERS = "AS_BASIC_AUTH_HEADERS"
"""Client authentication mode that sends `client_id:client_secret` as a Basic header"""

AS_BODY = "AS_BODY"
"""Client authentication mode that sends `client_id` and `client_secret` as form fields"""

FORM_CONTENT_TYPE = "application/x-www-form-urlencoded"

CLIENT_CREDENTIALS_TOKEN_TYPE = "client_credentials"
"""Value of the `type` claim carried by machine-to-machine bearer tokens"""

USER_SESSION_TOKEN_TYPE = "user_session"
"""Value of the `type` claim carried by human user session bearer tokens"""

ROLE_RANKS = {"user": 1, "moderator": 2, "admin": 3}
UNKNOWN_ROLE_RANK = 0
UNSATISFIABLE_ROLE_RANK = 999

REQUEST_STATE_AUTH_KEY = "auth"
"""Attribute of `request.state` holding the trust record of the current request"""
