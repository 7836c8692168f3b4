"""Value objects passed between the scan stages."""

from dataclasses import asdict, dataclass, field
from enum import Enum
from typing import Any, Dict, List, Tuple


class Risk(str, Enum):
    SAFE = "SAFE"
    SUSPICIOUS = "SUSPICIOUS"
    DANGEROUS = "DANGEROUS"


@dataclass
class PageFeatures:
    """Observations of one browsing session.

    Defaults are the "nothing found" values so a failed extraction step
    never has to invent data.
    """

    original_url: str = ""
    final_url: str = ""
    final_host: str = ""
    redirects: int = 0
    external_forms: List[str] = field(default_factory=list)
    has_password_input: bool = False
    hidden_iframes: int = 0
    external_scripts: int = 0
    external_images: int = 0
    host_is_ip: bool = False
    punycode_host: bool = False
    shortener: bool = False
    https: bool = False
    dynamic_exec: bool = False
    decoded_payload: bool = False
    static_suspicious: bool = False
    load_failed: bool = False

    def to_dict(self) -> Dict[str, Any]:
        return asdict(self)


@dataclass(frozen=True)
class RiskAssessment:
    score: int
    risk: Risk
    reasons: Tuple[str, ...] = ()

    @property
    def safe(self) -> bool:
        return self.risk is Risk.SAFE

    @property
    def reason(self) -> str:
        """Single-line summary used by the mobile client."""
        if not self.reasons:
            return "no risk signals"
        return "; ".join(self.reasons)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "safe": self.safe,
            "risk": self.risk.value,
            "reason": self.reason,
            "score": self.score,
            "reasons": list(self.reasons),
        }
