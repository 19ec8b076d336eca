"""EpiNet: epidemic parameter inference and contact-network agent simulation.

Two independent branches share one seeded random-stream hierarchy:
  - Inference: stochastic SIR forward simulator + Beta priors + Poisson
    likelihood → random-walk Metropolis-Hastings over (β, γ) → policy
    recommendations from the posterior chains
  - Network: preferential-attachment contact graph → five-state agent
    model (Shielded, Infiltrated, Spreader, Resistant, Fallen) advanced
    one day at a time

Outputs are plain read-only arrays meant for downstream plotting and
reporting, which live outside this package.
"""

__version__ = "0.1.0"
