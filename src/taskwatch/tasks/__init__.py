"""Task domain: model, storage, lifecycle, reminders and delivery."""
