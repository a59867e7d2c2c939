"""Staff dashboard and customer portal for the veterinary clinic API."""
