"""Customer notifications (transactional email)."""
