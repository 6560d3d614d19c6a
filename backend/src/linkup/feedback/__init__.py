"""Match outcomes, participant feedback and analytics."""
