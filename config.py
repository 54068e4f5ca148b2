import random
import re
from typing import Dict, Optional, Tuple, Union

from pydantic import BaseModel, ConfigDict, Field, field_validator

# Target middleware
BASE_URL = "http://localhost:8080"
TRANSACTION_PATH = "/api/middleware/v1/transaction"
API_KEY = "moje-tajne-heslo-12345"
API_KEY_HEADER = "X-API-KEY"

# Payload generation
CURRENCIES = ("CZK", "EUR")
AMOUNT_MIN = 1
AMOUNT_MAX = 1000
SERVICE_TYPE = "PAYMENT"
ORDER_PREFIX = "TEST"

THINK_TIME_SECONDS = 1.0
STOP_TIMEOUT_SECONDS = 10.0
EXPECTED_STATUS = 200

_DURATION_PART = re.compile(r"(\d+(?:\.\d+)?)(ms|h|m|s)")
_DURATION_UNITS = {"ms": 0.001, "s": 1.0, "m": 60.0, "h": 3600.0}


def parse_duration(value: Union[str, int, float]) -> float:
    """
    Convert "10s", "1m30s", "500ms" or a plain number of seconds to seconds.

    Kept alongside locust.util.timespan.parse_timespan because stages also take ms and decimals.
    """
    if isinstance(value, bool):
        raise ValueError("duration must be a number or a string like '30s'")
    if isinstance(value, (int, float)):
        return float(value)

    text = value.strip().lower()
    try:
        return float(text)
    except ValueError:
        pass

    parts = _DURATION_PART.findall(text)
    if not parts or "".join(n + u for n, u in parts) != text:
        raise ValueError(f"Invalid duration: {value!r}")
    return sum(float(number) * _DURATION_UNITS[unit] for number, unit in parts)


class Stage(BaseModel):
    """One segment of the ramp: reach `target` users over `duration` seconds"""
    model_config = ConfigDict(frozen=True)

    duration: float = Field(..., ge=0, description="Stage length in seconds")
    target: int = Field(..., ge=0, description="Virtual users at the end of the stage")

    @field_validator("duration", mode="before")
    @classmethod
    def convert_duration(cls, v):
        return parse_duration(v)


DEFAULT_STAGES = (
    Stage(duration="10s", target=5),   # ramp-up
    Stage(duration="30s", target=20),  # load
    Stage(duration="10s", target=0),   # ramp-down
)


class RunConfig(BaseModel):
    """Read-only settings shared by every virtual user of a run"""
    model_config = ConfigDict(frozen=True)

    base_url: str = BASE_URL
    path: str = TRANSACTION_PATH
    api_key: str = API_KEY
    stages: Tuple[Stage, ...] = DEFAULT_STAGES
    think_time: float = Field(default=THINK_TIME_SECONDS, gt=0)
    stop_timeout: float = Field(default=STOP_TIMEOUT_SECONDS, gt=0, description="Grace period for in-flight iterations when users stop")
    expected_status: int = EXPECTED_STATUS
    currencies: Tuple[str, ...] = Field(default=CURRENCIES, min_length=1)
    amount_min: int = Field(default=AMOUNT_MIN, ge=1)
    amount_max: int = AMOUNT_MAX
    service_type: str = SERVICE_TYPE
    order_prefix: str = ORDER_PREFIX
    seed: Optional[int] = None

    @field_validator("amount_max")
    @classmethod
    def validate_amount_range(cls, v, info):
        amount_min = info.data.get("amount_min", AMOUNT_MIN)
        if v < amount_min:
            raise ValueError(f"amount_max ({v}) must not be below amount_min ({amount_min})")
        return v

    @property
    def endpoint_url(self) -> str:
        return self.base_url.rstrip("/") + self.path

    @property
    def headers(self) -> Dict[str, str]:
        return {
            "Content-Type": "application/json",
            API_KEY_HEADER: self.api_key,
        }

    @property
    def total_duration(self) -> float:
        return sum(stage.duration for stage in self.stages)

    def rng_for(self, vu_id: int) -> random.Random:
        """Random source for one virtual user, reproducible when a seed is set"""
        if self.seed is None:
            return random.Random()
        return random.Random(self.seed + vu_id)


DEFAULT_CONFIG = RunConfig()
