"""Posterior chains → exceedance probabilities → recommendations.

  prob_high_beta = P(β > beta_threshold)
  prob_R0_gt1    = P(β/γ > r0_threshold)

Lockdown:    > lockdown_strong        → "Strongly Recommended"
             > lockdown_recommended   → "Recommended"
             otherwise                → "Not Recommended"
Vaccination: > vaccination_urgent     → "Urgent Need"
             > vaccination_recommended→ "Recommended"
             otherwise                → "Monitor Situation"

Pure functions; no randomness.
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import Optional, Tuple

import numpy as np

from epinet.config import PolicySection
from epinet.errors import ValidationError

LOCKDOWN_STRONG = "Strongly Recommended"
LOCKDOWN_RECOMMENDED = "Recommended"
LOCKDOWN_NOT = "Not Recommended"

VACCINATION_URGENT = "Urgent Need"
VACCINATION_RECOMMENDED = "Recommended"
VACCINATION_MONITOR = "Monitor Situation"


@dataclass(frozen=True)
class PolicyReport:
    prob_high_beta: float
    prob_R0_gt1: float
    r0_mean: float
    r0_interval: Tuple[float, float]
    lockdown: str
    vaccination: str


def _check_chains(beta_chain, gamma_chain) -> Tuple[np.ndarray, np.ndarray]:
    beta = np.asarray(beta_chain, dtype=np.float64)
    gamma = np.asarray(gamma_chain, dtype=np.float64)
    if beta.ndim != 1 or gamma.ndim != 1:
        raise ValidationError("chains must be 1-D")
    if len(beta) != len(gamma):
        raise ValidationError(
            f"chain lengths differ: beta {len(beta)}, gamma {len(gamma)}"
        )
    if len(beta) == 0:
        raise ValidationError("chains are empty")
    return beta, gamma


def r0_samples(beta_chain, gamma_chain) -> np.ndarray:
    """Per-sample basic reproduction number β[i] / γ[i]."""
    beta, gamma = _check_chains(beta_chain, gamma_chain)
    with np.errstate(divide='ignore'):
        return beta / gamma


def lockdown_recommendation(prob_high_beta: float,
                            cfg: Optional[PolicySection] = None) -> str:
    cfg = cfg or PolicySection()
    if prob_high_beta > cfg.lockdown_strong:
        return LOCKDOWN_STRONG
    if prob_high_beta > cfg.lockdown_recommended:
        return LOCKDOWN_RECOMMENDED
    return LOCKDOWN_NOT


def vaccination_recommendation(prob_r0_gt1: float,
                               cfg: Optional[PolicySection] = None) -> str:
    cfg = cfg or PolicySection()
    if prob_r0_gt1 > cfg.vaccination_urgent:
        return VACCINATION_URGENT
    if prob_r0_gt1 > cfg.vaccination_recommended:
        return VACCINATION_RECOMMENDED
    return VACCINATION_MONITOR


def analyze_policy(
    beta_chain,
    gamma_chain,
    cfg: Optional[PolicySection] = None,
    mass: float = 0.95,
) -> PolicyReport:
    """Summarise index-aligned posterior chains into a PolicyReport.

    Raises:
        ValidationError: If the chains differ in length or are empty.
    """
    cfg = cfg or PolicySection()
    beta, _ = _check_chains(beta_chain, gamma_chain)
    r0 = r0_samples(beta_chain, gamma_chain)

    prob_high_beta = float(np.mean(beta > cfg.beta_threshold))
    prob_r0 = float(np.mean(r0 > cfg.r0_threshold))
    tail = (1.0 - mass) / 2.0
    lo, hi = np.quantile(r0, [tail, 1.0 - tail])

    return PolicyReport(
        prob_high_beta=prob_high_beta,
        prob_R0_gt1=prob_r0,
        r0_mean=float(np.mean(r0)),
        r0_interval=(float(lo), float(hi)),
        lockdown=lockdown_recommendation(prob_high_beta, cfg),
        vaccination=vaccination_recommendation(prob_r0, cfg),
    )
