"""Validación y formato de RUT chileno (módulo 11)."""

_STRIP_CHARS = (".", "-", " ")


def clean(raw: str) -> str:
    """Quita puntos, guiones y espacios; deja la K en mayúscula."""
    if raw is None:
        return ""
    value = str(raw).strip()
    for ch in _STRIP_CHARS:
        value = value.replace(ch, "")
    return value.upper()


def split(raw: str) -> tuple[str, str]:
    """Separa (cuerpo, dígito verificador) sin validar el checksum."""
    value = clean(raw)
    return value[:-1], value[-1:]


def checksum(body: str) -> str:
    """Calcula el dígito verificador de un cuerpo numérico."""
    body = str(body)
    if not body or not body.isdigit():
        raise ValueError(f"Cuerpo de RUT inválido: '{body}'")

    total = 0
    weight = 2
    for digit in reversed(body):
        total += int(digit) * weight
        weight = 2 if weight == 7 else weight + 1

    expected = 11 - (total % 11)
    if expected == 11:
        return "0"
    if expected == 10:
        return "K"
    return str(expected)


def validate(raw: str) -> bool:
    body, dv = split(raw)
    if not body or not body.isdigit():
        return False
    return dv == checksum(body)


def format_rut(raw: str) -> str:
    """Formatea como 12.345.678-5. Helper de despliegue: nunca lanza."""
    body, dv = split(raw)
    if not body.isdigit() or not (dv.isdigit() or dv == "K"):
        return ""

    groups = []
    while body:
        groups.insert(0, body[-3:])
        body = body[:-3]
    return ".".join(groups) + "-" + dv
