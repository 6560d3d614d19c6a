"""Weight versions, optimization, experiments and fairness monitoring."""
