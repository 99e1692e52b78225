import secrets


def generate_response_token() -> str:
    """Unguessable single-use token for reminder and survey links"""
    return secrets.token_urlsafe(24)
