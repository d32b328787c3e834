"""
proxy-upgrade
Convenience exports for driving an upgradeable-proxy upgrade from Python.
"""

from .version import __version__  # noqa: F401

# Core types & errors
from .types import ImplementationArtifact, StageState, TxReceipt, TxRequest, TxType  # noqa: F401
from .errors import (  # noqa: F401
    AbiError,
    ConfigError,
    PostconditionError,
    PreconditionError,
    ReceiptTimeout,
    RevertError,
    RpcError,
    SubmissionError,
    UpgradeError,
)

# Chain & contracts
from .chain import ChainClient, JsonRpcChainClient  # noqa: F401
from .contracts import ContractClient, load_artifact, read_implementation  # noqa: F401

# Steps, stages, orchestration
from .executor import Applied, Failed, Skipped, UpgradeStep, execute  # noqa: F401
from .stages import (  # noqa: F401
    DeployImplementation,
    InitializeConfiguration,
    RegisterPair,
    StagePolicy,
    SwitchProxyTarget,
)
from .orchestrator import UpgradeOrchestrator, UpgradeReport, probe_state  # noqa: F401
from .config import UpgradeConfig, load_config  # noqa: F401

__all__ = [
    "__version__",
    # Core
    "ImplementationArtifact", "StageState", "TxReceipt", "TxRequest", "TxType",
    "UpgradeError", "ConfigError", "RpcError", "AbiError", "PreconditionError",
    "SubmissionError", "ReceiptTimeout", "RevertError", "PostconditionError",
    # Chain
    "ChainClient", "JsonRpcChainClient", "ContractClient", "load_artifact", "read_implementation",
    # Steps
    "UpgradeStep", "Skipped", "Applied", "Failed", "execute",
    "DeployImplementation", "InitializeConfiguration", "RegisterPair", "SwitchProxyTarget", "StagePolicy",
    "UpgradeOrchestrator", "UpgradeReport", "probe_state",
    # Config
    "UpgradeConfig", "load_config",
]
