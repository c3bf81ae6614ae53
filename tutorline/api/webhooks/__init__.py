from tutorline.api.webhooks import voice

__all__ = ["voice"]
