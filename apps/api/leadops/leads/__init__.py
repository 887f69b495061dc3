from leadops.leads.models import Contact, InboundMessage, LeadDistributionSettings, WebhookEndpoint

__all__ = ["Contact", "InboundMessage", "LeadDistributionSettings", "WebhookEndpoint"]
