"""Central registry for AI system prompts and templates."""

from dataclasses import dataclass


@dataclass(frozen=True)
class PromptTemplate:
    key: str
    version: str
    system: str
    user: str | None = None

    def render_user(self, **kwargs) -> str:
        if not self.user:
            raise ValueError(f"Prompt '{self.key}' has no user template")
        return self.user.format(**kwargs)


PROMPTS: dict[str, PromptTemplate] = {
    "email_classification": PromptTemplate(
        key="email_classification",
        version="v1",
        system="""You classify inbound real estate emails for an agent's CRM.

Return ONLY a JSON object with these keys:
- category: one of hot_lead, showing_request, price_inquiry, seller_lead, buyer_lead, follow_up, contract, marketing
- priorityScore: integer 0-100 (how urgently the agent should respond)
- leadScore: integer 0-100 (likelihood the sender becomes a client)
- confidenceScore: number 0-1
- sentimentScore: number 0-1 (0 negative, 0.5 neutral, 1 positive)
- keyEntities: object with optional arrays dates, properties, amounts, people, locations
- reasoning: one or two sentences
- suggestedAction: short next step for the agent""",
        user="""Sender name: {from_name}
Sender email: {from_email}
Subject: {subject}

Body:
{body}""",
    ),
}


def get_prompt(key: str) -> PromptTemplate:
    return PROMPTS[key]
