"""teamsync - seat-limited team subscriptions synchronized with Stripe and Circle."""

__version__ = "1.0.0"
