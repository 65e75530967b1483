"""Wire and business datatypes for the bunqers client."""

from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime
from decimal import Decimal, InvalidOperation
from enum import Enum
from typing import Any, Dict, Generic, List, Optional, Tuple, TypeVar

from bunqers.errors import ShapeMismatch

T = TypeVar("T")

DATETIME_FORMAT = "%Y-%m-%d %H:%M:%S.%f"

USER_KINDS = ("UserPerson", "UserCompany", "UserApiKey")


class JsonDict(dict[str, Any]):
    """Typed alias for JSON dictionaries used in internal serialization."""


def _object(value: Any, path: str) -> dict[str, Any]:
    if not isinstance(value, dict):
        raise ShapeMismatch(f"expected an object, got {type(value).__name__}", path)
    return value


def _field(obj: dict[str, Any], key: str, kind: type | Tuple[type, ...], path: str = "") -> Any:
    where = f"{path}.{key}" if path else key
    if key not in obj:
        raise ShapeMismatch("missing field", where)
    value = obj[key]
    kinds = kind if isinstance(kind, tuple) else (kind,)
    # bool is an int subclass; ids must not accept it
    if isinstance(value, bool) and int in kinds and bool not in kinds:
        raise ShapeMismatch("expected a number, got bool", where)
    if not isinstance(value, kind):
        raise ShapeMismatch(f"unexpected type {type(value).__name__}", where)
    return value


def _optional_str(obj: dict[str, Any], key: str, path: str = "") -> Optional[str]:
    if obj.get(key) is None:
        return None
    return _field(obj, key, str, path)


def _unwrap(element: Any, key: str) -> dict[str, Any]:
    return _object(_field(_object(element, ""), key, dict), key)


def parse_datetime(value: str, path: str = "") -> datetime:
    try:
        return datetime.strptime(value, DATETIME_FORMAT)
    except ValueError as error:
        raise ShapeMismatch(f"incorrect datetime {value!r}: {error}", path) from error


@dataclass(frozen=True)
class ApiErrorDescription:
    description: str
    translated: str

    @classmethod
    def from_dict(cls, value: Any) -> ApiErrorDescription:
        obj = _object(value, "")
        return cls(
            description=_field(obj, "error_description", str),
            translated=_field(obj, "error_description_translated", str),
        )


@dataclass(frozen=True)
class Pagination:
    future_url: Optional[str] = None
    newer_url: Optional[str] = None
    older_url: Optional[str] = None

    @classmethod
    def from_dict(cls, value: Any) -> Pagination:
        obj = _object(value, "")
        return cls(
            future_url=_optional_str(obj, "future_url"),
            newer_url=_optional_str(obj, "newer_url"),
            older_url=_optional_str(obj, "older_url"),
        )


@dataclass(frozen=True)
class Multiple(Generic[T]):
    items: List[T]
    pagination: Pagination

    def __iter__(self):
        return iter(self.items)

    def __len__(self) -> int:
        return len(self.items)


@dataclass(frozen=True)
class Amount:
    value: Decimal
    currency: str

    @classmethod
    def from_dict(cls, value: Any, path: str = "") -> Amount:
        obj = _object(value, path)
        raw = _field(obj, "value", str, path)
        try:
            amount = Decimal(raw)
        except InvalidOperation as error:
            raise ShapeMismatch(f"invalid decimal {raw!r}", f"{path}.value" if path else "value") from error
        return cls(value=amount, currency=_field(obj, "currency", str, path))

    def to_dict(self) -> JsonDict:
        return JsonDict({"value": f"{self.value:.2f}", "currency": self.currency})


@dataclass(frozen=True)
class User:
    id: int
    display_name: str
    kind: str

    @classmethod
    def from_dict(cls, value: Any) -> User:
        element = _object(value, "")
        for kind in USER_KINDS:
            if kind in element:
                body = _object(element[kind], kind)
                return cls(
                    id=_field(body, "id", int, kind),
                    display_name=_field(body, "display_name", str, kind),
                    kind=kind,
                )
        raise ShapeMismatch(f"expected one of {', '.join(USER_KINDS)}")


@dataclass(frozen=True)
class MonetaryAccountBank:
    id: int
    description: str
    currency: str
    status: str
    balance: Amount

    @classmethod
    def from_dict(cls, value: Any) -> MonetaryAccountBank:
        body = _unwrap(value, "MonetaryAccountBank")
        path = "MonetaryAccountBank"
        return cls(
            id=_field(body, "id", int, path),
            description=_field(body, "description", str, path),
            currency=_field(body, "currency", str, path),
            status=_field(body, "status", str, path),
            balance=Amount.from_dict(_field(body, "balance", dict, path), f"{path}.balance"),
        )


class PaymentRequestStatus(str, Enum):
    WAITING_FOR_PAYMENT = "WAITING_FOR_PAYMENT"
    CANCELLED = "CANCELLED"
    EXPIRED = "EXPIRED"
    PAID = "PAID"


@dataclass(frozen=True)
class PaymentRequest:
    """A bunq.me tab: a shareable request for money into one account."""

    id: int
    created: datetime
    updated: datetime
    time_expiry: datetime
    monetary_account_id: int
    status: PaymentRequestStatus
    share_url: str

    @classmethod
    def from_dict(cls, value: Any) -> PaymentRequest:
        path = "BunqMeTab"
        body = _unwrap(value, path)
        raw_status = _field(body, "status", str, path)
        try:
            status = PaymentRequestStatus(raw_status)
        except ValueError as error:
            raise ShapeMismatch(f"{raw_status!r} is not a valid status", f"{path}.status") from error
        return cls(
            id=_field(body, "id", int, path),
            created=parse_datetime(_field(body, "created", str, path), f"{path}.created"),
            updated=parse_datetime(_field(body, "updated", str, path), f"{path}.updated"),
            time_expiry=parse_datetime(_field(body, "time_expiry", str, path), f"{path}.time_expiry"),
            monetary_account_id=_field(body, "monetary_account_id", int, path),
            status=status,
            share_url=_field(body, "bunqme_tab_share_url", str, path),
        )


def decode_id(value: Any) -> int:
    return _field(_unwrap(value, "Id"), "id", int, "Id")


@dataclass(frozen=True)
class InstallationResult:
    installation_id: int
    token: str
    server_public_key: str

    @classmethod
    def from_elements(cls, elements: Tuple[Dict[str, Any], ...]) -> InstallationResult:
        id_obj, token_obj, key_obj = elements
        return cls(
            installation_id=_field(id_obj, "id", int, "Id"),
            token=_field(token_obj, "token", str, "Token"),
            server_public_key=_field(key_obj, "server_public_key", str, "ServerPublicKey"),
        )


@dataclass(frozen=True)
class SessionResult:
    session_id: int
    token: str
    owner_id: int

    @classmethod
    def from_elements(cls, elements: Tuple[Dict[str, Any], ...]) -> SessionResult:
        id_obj, token_obj, user_obj = elements
        return cls(
            session_id=_field(id_obj, "id", int, "Id"),
            token=_field(token_obj, "token", str, "Token"),
            owner_id=_field(user_obj, "id", int, "User"),
        )
