from clientdesk.integrations.outbound import send_email

__all__ = ["send_email"]
