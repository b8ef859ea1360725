"""Security and identity options applied to the OPC UA client.

The connection layer only calls :meth:`ConnectionOptions.apply`; what it
configures is decided here from the opcua config section.
"""

import logging
from dataclasses import dataclass, field
from typing import Optional

from asyncua import Client, ua
from asyncua.crypto.security_policies import (
    SecurityPolicyBasic128Rsa15,
    SecurityPolicyBasic256,
    SecurityPolicyBasic256Sha256,
)

from .config import AuthMethod, OpcUaConfig, SecurityMode, SecurityPolicy
from .exceptions import ConnectError

logger = logging.getLogger(__name__)

POLICY_URI_PREFIX = "http://opcfoundation.org/UA/SecurityPolicy#"

POLICY_CLASSES = {
    SecurityPolicy.BASIC128RSA15: SecurityPolicyBasic128Rsa15,
    SecurityPolicy.BASIC256: SecurityPolicyBasic256,
    SecurityPolicy.BASIC256SHA256: SecurityPolicyBasic256Sha256,
}

MESSAGE_MODES = {
    SecurityMode.NONE: ua.MessageSecurityMode.None_,
    SecurityMode.SIGN: ua.MessageSecurityMode.Sign,
    SecurityMode.SIGN_AND_ENCRYPT: ua.MessageSecurityMode.SignAndEncrypt,
}


def policy_from_uri(uri: str) -> Optional[SecurityPolicy]:
    """Map an endpoint SecurityPolicyUri to a SecurityPolicy, if known."""
    if not uri.startswith(POLICY_URI_PREFIX):
        return None
    try:
        return SecurityPolicy(uri[len(POLICY_URI_PREFIX):])
    except ValueError:
        return None


def mode_from_ua(mode: ua.MessageSecurityMode) -> Optional[SecurityMode]:
    for key, value in MESSAGE_MODES.items():
        if value == mode:
            return key
    return None


def select_endpoint(
    endpoints: list[ua.EndpointDescription],
    policy: SecurityPolicy,
    mode: SecurityMode,
    have_certificate: bool,
) -> tuple[SecurityPolicy, SecurityMode]:
    """Pick the most secure endpoint matching the configured constraints.

    ``auto`` matches any policy or mode. Secured endpoints are skipped when
    no client certificate is configured.

    Raises:
        ConnectError: No endpoint matches.
    """
    candidates = []
    for ep in endpoints:
        ep_policy = policy_from_uri(ep.SecurityPolicyUri)
        ep_mode = mode_from_ua(ep.SecurityMode)
        if ep_policy is None or ep_mode is None:
            continue
        if policy is not SecurityPolicy.AUTO and ep_policy is not policy:
            continue
        if mode is not SecurityMode.AUTO and ep_mode is not mode:
            continue
        secured = ep_policy is not SecurityPolicy.NONE or ep_mode is not SecurityMode.NONE
        if secured and not have_certificate:
            continue
        candidates.append((ep.SecurityLevel, ep_policy, ep_mode))

    if not candidates:
        raise ConnectError(
            f"no server endpoint matches security policy '{policy.value}' "
            f"and mode '{mode.value}'"
        )

    _, best_policy, best_mode = max(candidates, key=lambda c: c[0])
    return best_policy, best_mode


@dataclass
class ConnectionOptions:
    """Security, certificate and user identity settings for a session."""

    endpoint: str
    security_policy: SecurityPolicy = SecurityPolicy.AUTO
    security_mode: SecurityMode = SecurityMode.AUTO
    certificate: str = ""
    private_key: str = ""
    auth_method: AuthMethod = AuthMethod.ANONYMOUS
    username: str = ""
    password: str = ""
    _resolved: Optional[tuple[SecurityPolicy, SecurityMode]] = field(default=None, repr=False)

    @classmethod
    def from_config(cls, config: OpcUaConfig) -> "ConnectionOptions":
        return cls(
            endpoint=config.endpoint,
            security_policy=config.security_policy,
            security_mode=config.security_mode,
            certificate=config.certificate,
            private_key=config.private_key,
            auth_method=config.auth_method,
            username=config.username,
            password=config.password,
        )

    @property
    def needs_discovery(self) -> bool:
        return (
            self.security_policy is SecurityPolicy.AUTO
            or self.security_mode is SecurityMode.AUTO
        )

    async def resolve_security(self, client: Client) -> tuple[SecurityPolicy, SecurityMode]:
        """Return the concrete policy and mode, asking the server if needed."""
        if self._resolved is not None:
            return self._resolved

        if not self.needs_discovery:
            self._resolved = (self.security_policy, self.security_mode)
            return self._resolved

        endpoints = await client.connect_and_get_server_endpoints()
        self._resolved = select_endpoint(
            endpoints,
            self.security_policy,
            self.security_mode,
            bool(self.certificate and self.private_key),
        )
        logger.info(
            f"Selected endpoint security {self._resolved[0].value}/{self._resolved[1].value}"
        )
        return self._resolved

    def forget_security(self) -> None:
        """Drop the discovered endpoint choice; the next apply asks again."""
        self._resolved = None

    async def apply(self, client: Client) -> None:
        """Configure security and user identity on a not yet connected client."""
        policy, mode = await self.resolve_security(client)

        if policy is not SecurityPolicy.NONE or mode is not SecurityMode.NONE:
            if policy is SecurityPolicy.NONE or mode is SecurityMode.NONE:
                raise ConnectError(
                    f"security policy '{policy.value}' cannot be combined with mode '{mode.value}'"
                )
            await client.set_security(
                POLICY_CLASSES[policy],
                self.certificate,
                self.private_key,
                mode=MESSAGE_MODES[mode],
            )

        if self.auth_method is AuthMethod.USERNAME:
            client.set_user(self.username)
            client.set_password(self.password)
        elif self.auth_method is AuthMethod.CERTIFICATE:
            await client.load_client_certificate(self.certificate)
            await client.load_private_key(self.private_key)
