import random
import string


def _random_block(length: int = 8) -> str:
    """
    Return a random string of uppercase letters and digits.
    """
    alphabet = string.ascii_uppercase + string.digits
    return "".join(random.choices(alphabet, k=length))


def generate_dealer_id(prefix: str = "DLR") -> str:
    """
    Generate a short tenant ID like 'DLR-1F2A9C3D'.

    SQLAlchemy calls column defaults with zero positional arguments,
    so this must work as `generate_dealer_id()`.
    """
    block = _random_block(8)
    if prefix:
        return f"{prefix}-{block}"
    return block
