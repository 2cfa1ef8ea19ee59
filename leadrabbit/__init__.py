"""LeadRabbit: multi-tenant lead management backend."""
