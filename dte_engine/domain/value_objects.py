"""Value objects del dominio."""

from dataclasses import dataclass
from typing import Optional

from dte_engine.domain import rut
from dte_engine.domain.exceptions import InvalidTaxId


@dataclass(frozen=True)
class TaxId:
    """RUT validado. Inmutable: solo se construye con checksum correcto."""

    body: str
    check_digit: str

    def __post_init__(self) -> None:
        object.__setattr__(self, "check_digit", str(self.check_digit).upper())
        if not self.body or not self.body.isdigit():
            raise InvalidTaxId(f"{self.body}-{self.check_digit}", "cuerpo no numérico")
        expected = rut.checksum(self.body)
        if self.check_digit != expected:
            raise InvalidTaxId(
                f"{self.body}-{self.check_digit}",
                f"dígito verificador {self.check_digit}, se esperaba {expected}",
            )

    @classmethod
    def parse(cls, raw: str) -> "TaxId":
        body, dv = rut.split(raw)
        if not body:
            raise InvalidTaxId(str(raw), "RUT vacío o incompleto")
        return cls(body=body, check_digit=dv)

    @property
    def compact(self) -> str:
        """Forma sin puntos: 12345678-5."""
        return f"{self.body}-{self.check_digit}"

    def formatted(self) -> str:
        return rut.format_rut(self.compact)

    def __str__(self) -> str:
        return self.compact


@dataclass(frozen=True)
class Party:
    """Emisor o receptor de un documento."""

    tax_id: TaxId
    business_name: str = ""
    activity: str = ""  # giro
    email: Optional[str] = None
