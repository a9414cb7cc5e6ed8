"""Plan catalog: tiers, per-resource quotas and upgrade guidance.

The catalog is built once at process start (``load_catalog``) and injected
into the quota evaluator. It is immutable: plans are frozen dataclasses and
limit tables are read-only mapping proxies.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from pathlib import Path
from types import MappingProxyType
from typing import Any, Mapping, Union

import yaml

from academy_guard.core.exceptions import PlanNotFoundError
from academy_guard.core.logging import get_logger
from academy_guard.core.types import PlanCode, ResourceType

log = get_logger(__name__)


class _Unlimited:
    """Sentinel for a quota with no cap. Never compared numerically."""

    _instance: _Unlimited | None = None

    def __new__(cls) -> _Unlimited:
        if cls._instance is None:
            cls._instance = super().__new__(cls)
        return cls._instance

    def __repr__(self) -> str:
        return "UNLIMITED"

    def __reduce__(self) -> str:
        return "UNLIMITED"


UNLIMITED = _Unlimited()

Limit = Union[int, _Unlimited]


def is_unlimited(limit: Limit) -> bool:
    return limit is UNLIMITED


def limit_to_json(limit: Limit) -> int | str:
    return "unlimited" if is_unlimited(limit) else limit  # type: ignore[return-value]


# Ascending tier order drives ``next_tier``.
TIER_ORDER: tuple[PlanCode, ...] = (PlanCode.FREE, PlanCode.PRO, PlanCode.PREMIUM)


@dataclass(frozen=True)
class UpgradeInfo:
    plan: PlanCode
    price: str
    benefits: tuple[str, ...]

    def to_dict(self) -> dict[str, Any]:
        return {"plan": self.plan.value, "price": self.price, "benefits": list(self.benefits)}


@dataclass(frozen=True)
class Plan:
    code: PlanCode
    nickname: str
    price: str
    limits: Mapping[ResourceType, Limit]
    benefits: tuple[str, ...] = field(default_factory=tuple)

    def limit(self, resource: ResourceType) -> Limit:
        return self.limits[resource]


_DEFAULT_PLANS: list[dict[str, Any]] = [
    {
        "code": "free",
        "nickname": "Free",
        "price": "0€/mes",
        "benefits": ["1 academia", "Hasta 50 atletas", "3 grupos", "10 clases"],
        "limits": {"athletes": 50, "coaches": 5, "classes": 10, "groups": 3, "academies": 1},
    },
    {
        "code": "pro",
        "nickname": "Pro",
        "price": "19€/mes",
        "benefits": ["Academias ilimitadas", "Hasta 200 atletas", "10 grupos", "40 clases"],
        "limits": {
            "athletes": 200,
            "coaches": 25,
            "classes": 40,
            "groups": 10,
            "academies": "unlimited",
        },
    },
    {
        "code": "premium",
        "nickname": "Premium",
        "price": "49€/mes",
        "benefits": ["Todo ilimitado", "API extendida", "Soporte prioritario"],
        "limits": {r.value: "unlimited" for r in ResourceType},
    },
]


def _parse_limit(limits: Mapping[str, object], code: str, resource: str) -> Limit:
    if resource not in limits:
        msg = f"Missing limit for {code}.{resource}"
        raise ValueError(msg)
    raw = limits[resource]
    if raw == "unlimited":
        return UNLIMITED
    if isinstance(raw, bool) or not isinstance(raw, int) or raw < 0:
        msg = f"Invalid limit {raw!r} for {code}.{resource}"
        raise ValueError(msg)
    return raw


class PlanCatalog:
    """Read-only table of plan tiers and their per-resource quotas."""

    def __init__(self, plans: list[Plan]) -> None:
        by_code = {p.code: p for p in plans}
        missing = [c.value for c in TIER_ORDER if c not in by_code]
        if missing:
            msg = f"Plan catalog is missing tiers: {', '.join(missing)}"
            raise ValueError(msg)
        self._plans: Mapping[PlanCode, Plan] = MappingProxyType(by_code)

    # ── Construction ─────────────────────────────────────────────

    @classmethod
    def from_dicts(cls, raw_plans: list[dict[str, Any]]) -> PlanCatalog:
        plans: list[Plan] = []
        for raw in raw_plans:
            code = str(raw["code"])
            raw_limits: dict[str, object] = raw.get("limits", {})
            limits = {
                resource: _parse_limit(raw_limits, code, resource.value)
                for resource in ResourceType
            }
            plans.append(
                Plan(
                    code=PlanCode(code),
                    nickname=str(raw.get("nickname", code.title())),
                    price=str(raw.get("price", "")),
                    limits=MappingProxyType(limits),
                    benefits=tuple(raw.get("benefits", ())),
                )
            )
        return cls(plans)

    @classmethod
    def default(cls) -> PlanCatalog:
        return cls.from_dicts(_DEFAULT_PLANS)

    @classmethod
    def from_yaml(cls, path: Path) -> PlanCatalog:
        with path.open(encoding="utf-8") as fh:
            config: dict[str, Any] = yaml.safe_load(fh) or {}
        raw_plans = config.get("plans")
        if not raw_plans:
            msg = f"No plans found in {path}"
            raise ValueError(msg)
        return cls.from_dicts(raw_plans)

    # ── Queries ──────────────────────────────────────────────────

    def get(self, code: PlanCode | str) -> Plan:
        try:
            return self._plans[PlanCode(code)]
        except (KeyError, ValueError):
            raise PlanNotFoundError(
                "Plan not found in catalog", context={"plan_code": str(code)},
            ) from None

    def limit(self, code: PlanCode | str, resource: ResourceType) -> Limit:
        return self.get(code).limit(resource)

    def next_tier(self, code: PlanCode | str) -> PlanCode | None:
        """Return the plan tier strictly above ``code``, or None at the top."""
        idx = TIER_ORDER.index(self.get(code).code)
        if idx + 1 >= len(TIER_ORDER):
            return None
        return TIER_ORDER[idx + 1]

    def upgrade_info(self, code: PlanCode | str) -> UpgradeInfo | None:
        target = self.next_tier(code)
        if target is None:
            return None
        plan = self.get(target)
        return UpgradeInfo(plan=plan.code, price=plan.price, benefits=plan.benefits)

    def quota_bound_resources(self, code: PlanCode | str) -> list[ResourceType]:
        """Resource types with a numeric cap on the given plan."""
        plan = self.get(code)
        return [r for r in ResourceType if not is_unlimited(plan.limit(r))]

    @property
    def plans(self) -> list[Plan]:
        return [self._plans[c] for c in TIER_ORDER]


def load_catalog(path: Path | None = None) -> PlanCatalog:
    """Build the process-wide catalog from YAML, falling back to the defaults."""
    if path is not None and path.exists():
        catalog = PlanCatalog.from_yaml(path)
        log.info("plan_catalog_loaded", source=str(path), plans=len(catalog.plans))
        return catalog
    log.info("plan_catalog_loaded", source="defaults", plans=len(TIER_ORDER))
    return PlanCatalog.default()
