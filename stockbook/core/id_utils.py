import shortuuid


def generate_shortuuid() -> str:
    return shortuuid.uuid()


def generate_short_token(length: int = 12) -> str:
    return shortuuid.ShortUUID().random(length=length)


def short_reference(entity_id: str, length: int = 8) -> str:
    """First characters of an id, upper-cased, for human-facing references."""
    return entity_id.replace("-", "")[:length].upper()
