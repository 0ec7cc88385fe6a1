"""LeadGuard: prompt-injection defense for a conversational sales assistant."""

__version__ = "0.1.0"
