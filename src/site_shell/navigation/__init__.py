"""Navigation policy: in-scope checks, SSO passthrough and link unwrapping."""

from site_shell.navigation.models import DecisionAction, NavigationDecision, Verdict
from site_shell.navigation.policy import NavigationPolicyEngine
from site_shell.navigation.redirects import RedirectChain, is_wrapper_host, unwrap_redirect
from site_shell.navigation.sso import SSODetector

__all__ = [
    "DecisionAction",
    "NavigationDecision",
    "NavigationPolicyEngine",
    "RedirectChain",
    "SSODetector",
    "Verdict",
    "is_wrapper_host",
    "unwrap_redirect",
]
