from .policy import policy_bp
from .workflows import workflows_bp
from .declarations import declarations_bp
from .cases import cases_bp
from .recon import recon_bp
from .kpi import kpi_bp

__all__ = ["policy_bp", "workflows_bp", "declarations_bp", "cases_bp", "recon_bp", "kpi_bp"]
