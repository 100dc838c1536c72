import time
from enum import StrEnum

from loguru import logger

from oauth_provider.db.models import AccessToken


class Operation(StrEnum):
    READ = "read"
    CREATE = "create"
    UPDATE = "update"
    DELETE = "delete"

    @property
    def is_write(self) -> bool:
        return self is not Operation.READ


class Decision(StrEnum):
    ALLOW = "allow"
    DENY = "deny"


def check_access(access_token: AccessToken, operation: Operation | str, now: int | None = None) -> Decision:
    """
    Punto de decisión para la aplicación anfitriona antes de leer o escribir
    en nombre de un consumidor. Un token caducado no permite nada; uno vigente
    siempre permite leer y sólo permite escribir si ``can_write``.
    """
    operation = Operation(operation)
    now = int(time.time()) if now is None else now

    if access_token.valid_until < now:
        logger.info("Expired OAuth access token for consumer {} cannot {}",
                    access_token.consumer.key, operation)
        return Decision.DENY
    if not operation.is_write or access_token.can_write:
        return Decision.ALLOW

    logger.info("Unable to {} because the OAuth access token of consumer {} does not allow it",
                operation, access_token.consumer.key)
    return Decision.DENY
