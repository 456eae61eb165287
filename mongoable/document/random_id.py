import secrets
import string


URL_SAFE_ALPHABET = string.ascii_uppercase + string.ascii_lowercase + string.digits + "_-"
""" 64 symbols. 21 characters over this alphabet give 126 bits of entropy. """

DEFAULT_ID_LENGTH = 21


def random_id(length: int = DEFAULT_ID_LENGTH, alphabet: str = URL_SAFE_ALPHABET) -> str:
    """ Returns a URL-safe random string drawn from a cryptographically strong source. """
    if length <= 0:
        raise ValueError("Id length must be positive.")
    return ''.join(secrets.choice(alphabet) for _ in range(length))
