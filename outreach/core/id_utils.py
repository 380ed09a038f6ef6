import shortuuid


def generate_shortuuid() -> str:
    return shortuuid.uuid()


def generate_reference(prefix: str, length: int = 18) -> str:
    token = shortuuid.ShortUUID(alphabet="0123456789abcdefghijkmnopqrstuvwxyz").random(length=length)
    return f"{prefix}_{token}"
