from pydantic import BaseModel

from utils import auth, env, log
from utils.env import EnvVarSpec

logger = log.get_logger(__name__)

#### Types ####

class HttpServerConf(BaseModel):
    host: str
    port: int
    autoreload: bool

class SchedulerConf(BaseModel):
    enabled: bool
    sweep_interval_seconds: int
    notification_interval_seconds: int
    reconcile_batch_size: int

class PayoutConf(BaseModel):
    min_withdrawal_cents: int

#### Env Vars ####

## Auth ##

USE_AUTH_FLAG = EnvVarSpec(
    id="USE_AUTH",
    default="true",
    parse=lambda x: x.lower() == "true",
    type=(bool, ...),
)

AUTH_OIDC_JWK_URL = EnvVarSpec(id="AUTH_OIDC_JWK_URL", is_optional=True)
AUTH_OIDC_AUDIENCE = EnvVarSpec(id="AUTH_OIDC_AUDIENCE", is_optional=True)
AUTH_OIDC_ISSUER = EnvVarSpec(id="AUTH_OIDC_ISSUER", is_optional=True)

INTERNAL_API_KEY = EnvVarSpec(id="INTERNAL_API_KEY", is_optional=True, is_secret=True)

## Logging ##

LOG_LEVEL = EnvVarSpec(id="LOG_LEVEL", default="INFO")

## HTTP ##

HTTP_HOST = EnvVarSpec(id="HTTP_HOST", default="0.0.0.0")

HTTP_PORT = EnvVarSpec(id="HTTP_PORT", default="8000", parse=int, type=(int, ...))

HTTP_AUTORELOAD = EnvVarSpec(
    id="HTTP_AUTORELOAD",
    parse=lambda x: x.lower() == "true",
    default="false",
    type=(bool, ...),
)

HTTP_EXPOSE_ERRORS = EnvVarSpec(
    id="HTTP_EXPOSE_ERRORS",
    default="false",
    parse=lambda x: x.lower() == "true",
    type=(bool, ...),
)

## Scheduler ##

SCHEDULER_ENABLED = EnvVarSpec(
    id="SCHEDULER_ENABLED",
    default="true",
    parse=lambda x: x.lower() == "true",
    type=(bool, ...),
)

AUCTION_SWEEP_INTERVAL_SECONDS = EnvVarSpec(
    id="AUCTION_SWEEP_INTERVAL_SECONDS",
    default="60",
    parse=int,
    type=(int, ...),
)

NOTIFICATION_DISPATCH_INTERVAL_SECONDS = EnvVarSpec(
    id="NOTIFICATION_DISPATCH_INTERVAL_SECONDS",
    default="30",
    parse=int,
    type=(int, ...),
)

RECONCILE_BATCH_SIZE = EnvVarSpec(
    id="RECONCILE_BATCH_SIZE",
    default="100",
    parse=int,
    type=(int, ...),
)

## Payouts ##

MIN_WITHDRAWAL_CENTS = EnvVarSpec(
    id="MIN_WITHDRAWAL_CENTS",
    default="1000",
    parse=int,
    type=(int, ...),
)

## Stripe ##
## NOTE: the Stripe Connect and PayPal clients read their own credentials
## (STRIPE_SECRET_KEY, PAYPAL_*); only the webhook secret lives here.

STRIPE_SECRET_KEY = EnvVarSpec(id="STRIPE_SECRET_KEY", is_optional=True, is_secret=True)
STRIPE_WEBHOOK_SECRET = EnvVarSpec(id="STRIPE_WEBHOOK_SECRET", is_optional=True, is_secret=True)

## Twilio ##
## NOTE: the SMS client reads TWILIO_ACCOUNT_SID, TWILIO_AUTH_TOKEN and
## TWILIO_FROM_NUMBER directly and falls back to log-only delivery.


# Set USE_AUTH=false to disable authentication (local development only)
USE_AUTH = env.parse(USE_AUTH_FLAG)

#### Validation ####
VALIDATED_ENV_VARS = [
    USE_AUTH_FLAG,
    HTTP_AUTORELOAD,
    HTTP_EXPOSE_ERRORS,
    HTTP_PORT,
    LOG_LEVEL,
    SCHEDULER_ENABLED,
    AUCTION_SWEEP_INTERVAL_SECONDS,
    NOTIFICATION_DISPATCH_INTERVAL_SECONDS,
    RECONCILE_BATCH_SIZE,
    MIN_WITHDRAWAL_CENTS,
]

# Only validate auth vars if USE_AUTH is True
if USE_AUTH:
    VALIDATED_ENV_VARS.extend([
        AUTH_OIDC_JWK_URL,
        AUTH_OIDC_AUDIENCE,
        AUTH_OIDC_ISSUER,
    ])

def validate() -> bool:
    return env.validate(VALIDATED_ENV_VARS)

#### Getters ####

def get_auth_config() -> auth.AuthClientConfig:
    """Get authentication configuration."""
    return auth.AuthClientConfig(
        jwk_url=env.parse(AUTH_OIDC_JWK_URL),
        audience=env.parse(AUTH_OIDC_AUDIENCE),
        issuer=env.parse(AUTH_OIDC_ISSUER),
    )

def get_internal_api_key() -> str | None:
    return env.parse(INTERNAL_API_KEY)

def get_http_expose_errors() -> bool:
    return env.parse(HTTP_EXPOSE_ERRORS)

def get_log_level() -> str:
    return env.parse(LOG_LEVEL)

def get_http_conf() -> HttpServerConf:
    return HttpServerConf(
        host=env.parse(HTTP_HOST),
        port=env.parse(HTTP_PORT),
        autoreload=env.parse(HTTP_AUTORELOAD),
    )

def get_scheduler_conf() -> SchedulerConf:
    return SchedulerConf(
        enabled=env.parse(SCHEDULER_ENABLED),
        sweep_interval_seconds=max(5, env.parse(AUCTION_SWEEP_INTERVAL_SECONDS)),
        notification_interval_seconds=max(5, env.parse(NOTIFICATION_DISPATCH_INTERVAL_SECONDS)),
        reconcile_batch_size=max(1, env.parse(RECONCILE_BATCH_SIZE)),
    )

def get_payout_conf() -> PayoutConf:
    return PayoutConf(min_withdrawal_cents=max(0, env.parse(MIN_WITHDRAWAL_CENTS)))

def get_stripe_secret_key() -> str | None:
    return env.parse(STRIPE_SECRET_KEY)

def get_stripe_webhook_secret() -> str | None:
    return env.parse(STRIPE_WEBHOOK_SECRET)
