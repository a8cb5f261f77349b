"""Verification stages run by the pipeline orchestrator."""

from releasegate.stages.architecture import ArchitectureChecker, ArchitectureResult
from releasegate.stages.cluster import ClusterSmokeTester
from releasegate.stages.emulation import Emulation, EmulationSetupError
from releasegate.stages.signature import SignatureVerifier
from releasegate.stages.standalone import StandaloneSmokeTester

__all__ = [
    "ArchitectureChecker",
    "ArchitectureResult",
    "ClusterSmokeTester",
    "Emulation",
    "EmulationSetupError",
    "SignatureVerifier",
    "StandaloneSmokeTester",
]
