"""Database models — re-exports all models.

Import from here:  from engage.models import Contact, Conversation, ...
Or from submodules: from engage.models.contacts import Contact
"""

from .base import Base  # noqa: F401

# Tenancy & Billing
from .organization import (  # noqa: F401
    CreditBalance,
    CreditDeductionFailure,
    CreditTransaction,
    Organization,
)

# Contacts
from .contacts import Contact, ContactAgreement, ContactNote, ContactSource  # noqa: F401

# Conversations
from .conversations import ChannelConfig, Conversation, ConversationMessage  # noqa: F401

# Agents
from .agents import Agent, AgentAssignment  # noqa: F401

# Forms & Voice
from .forms import Form, FormSubmission, VoiceCall  # noqa: F401

# Catalog
from .catalog import Product, ProductCategory  # noqa: F401
