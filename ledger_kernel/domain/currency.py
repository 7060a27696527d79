"""Currency -- ISO 4217 codes and their minor units."""

from dataclasses import dataclass
from decimal import Decimal
from typing import ClassVar

from ledger_kernel.exceptions import InvalidCurrencyError

# Active ISO 4217 codes with two minor units.
_TWO_DECIMAL_CODES = """
    AED AFN ALL AMD ANG AOA ARS AUD AWG AZN BAM BBD BDT BGN BMD BND BOB BOV
    BRL BSD BTN BWP BYN BZD CAD CDF CHE CHF CHW CNY COP COU CRC CUC CUP CVE
    CZK DKK DOP DZD EGP ERN ETB EUR FJD FKP GBP GEL GHS GIP GMD GTQ GYD HKD
    HNL HTG HUF IDR ILS INR IRR JMD KES KGS KHR KPW KYD KZT LAK LBP LKR LRD
    LSL MAD MDL MGA MKD MMK MNT MOP MRU MUR MVR MWK MXN MXV MYR MZN NAD NGN
    NIO NOK NPR NZD PAB PEN PGK PHP PKR PLN QAR RON RSD RUB SAR SBD SCR SDG
    SEK SGD SHP SLE SOS SRD SSP STN SVC SYP SZL THB TJS TMT TOP TRY TTD TWD
    TZS UAH USD USN UYU UZS VED VES WST XCD YER ZAR ZMW ZWL
"""

# Codes whose minor unit differs from two.  Funds and metals (XAU, XDR, ...)
# have no minor unit and are treated as zero-decimal.
_OTHER_MINOR_UNITS = {
    "BIF": 0, "CLP": 0, "DJF": 0, "GNF": 0, "ISK": 0, "JPY": 0, "KMF": 0,
    "KRW": 0, "PYG": 0, "RWF": 0, "UGX": 0, "UYI": 0, "VND": 0, "VUV": 0,
    "XAF": 0, "XOF": 0, "XPF": 0,
    "XAG": 0, "XAU": 0, "XBA": 0, "XBB": 0, "XBC": 0, "XBD": 0, "XDR": 0,
    "XPD": 0, "XPT": 0, "XSU": 0, "XTS": 0, "XUA": 0, "XXX": 0,
    "BHD": 3, "IQD": 3, "JOD": 3, "KWD": 3, "LYD": 3, "OMR": 3, "TND": 3,
    "CLF": 4, "UYW": 4,
}


@dataclass(frozen=True)
class CurrencyInfo:
    code: str
    decimal_places: int

    @property
    def minor_unit(self) -> Decimal:
        """Smallest representable amount, e.g. Decimal('0.01')."""
        return Decimal(1).scaleb(-self.decimal_places)


class CurrencyRegistry:
    """Lookup of ISO 4217 codes and minor units."""

    _CURRENCIES: ClassVar[dict[str, CurrencyInfo]] = {
        **{code: CurrencyInfo(code, 2) for code in _TWO_DECIMAL_CODES.split()},
        **{code: CurrencyInfo(code, places) for code, places in _OTHER_MINOR_UNITS.items()},
    }

    @classmethod
    def is_valid(cls, code: str) -> bool:
        if not code or not isinstance(code, str):
            return False
        return code.upper().strip() in cls._CURRENCIES

    @classmethod
    def get_info(cls, code: str) -> CurrencyInfo | None:
        if not code or not isinstance(code, str):
            return None
        return cls._CURRENCIES.get(code.upper().strip())

    @classmethod
    def get_decimal_places(cls, code: str) -> int:
        """Minor units of ``code``; raises for unknown codes."""
        info = cls.get_info(code)
        if info is None:
            raise InvalidCurrencyError(str(code))
        return info.decimal_places

    @classmethod
    def validate(cls, code: str) -> str:
        """Return the normalized (upper-case) code or raise InvalidCurrencyError."""
        if not cls.is_valid(code):
            raise InvalidCurrencyError(str(code))
        return code.upper().strip()

    @classmethod
    def all_codes(cls) -> frozenset[str]:
        return frozenset(cls._CURRENCIES)
