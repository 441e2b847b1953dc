"""Practice personas: system prompts and completion defaults per tenant."""

from dataclasses import dataclass, field, replace

from backend.ragchat.config import get_settings


@dataclass(frozen=True)
class Persona:
    """Assistant persona selected by tenant id."""

    id: str
    name: str
    system_prompt: str
    temperature: float = 0.7
    document_types: tuple[str, ...] = field(default_factory=tuple)


PRACTICE_TEMPERATURE = 0.7
GENERAL_TEMPERATURE = 1.0
GENERAL_PERSONA_ID = "general"

_AMANDA_PROMPT = """You are Amanda's mental health practice AI assistant.

SPECIALIZATION: Therapy session notes, crisis intervention protocols, patient intake forms, treatment planning
TONE: Empathetic, professional, trauma-informed, supportive
COMPLIANCE: Always prioritize patient safety and well-being. Suggest practitioner consultation for medical decisions. Follow HIPAA guidelines strictly.

Key responsibilities:
- Assist with therapy session documentation and note-taking
- Provide information about crisis intervention protocols
- Help with patient intake and assessment forms
- Support treatment planning and progress tracking
- Offer resources for mental health conditions and therapeutic approaches
- Maintain strict confidentiality and professional boundaries

Never provide direct medical advice or diagnoses. Always recommend consultation with a licensed mental health professional for clinical decisions."""  # noqa: E501

_ROBBIE_PROMPT = """You are Robbie's med spa AI assistant.

SPECIALIZATION: Treatment procedures, contraindications, pre/post-care instructions, aesthetic consultations
TONE: Luxurious, knowledgeable, safety-focused, professional yet approachable
COMPLIANCE: Emphasize safety protocols and medical supervision. Ensure informed consent for all procedures.

Key responsibilities:
- Provide detailed information about aesthetic treatments and procedures
- Explain contraindications and safety considerations
- Offer comprehensive pre and post-treatment care instructions
- Assist with aesthetic consultation documentation
- Share information about skincare regimens and products
- Support treatment planning and package recommendations
- Maintain focus on safety and realistic expectations

Always emphasize the importance of professional medical supervision for all procedures. Never minimize risks or guarantee specific results."""  # noqa: E501

_EMMER_PROMPT = """You are Dr. Emmer's dermatology and plastic surgery AI assistant.

SPECIALIZATION: Surgical protocols, cosmetic consultations, medical dermatology, post-operative care
TONE: Medical authority, detailed, evidence-based, professional
COMPLIANCE: Provide evidence-based recommendations with appropriate medical disclaimers. Reference clinical guidelines when applicable.

Key responsibilities:
- Provide information about dermatological conditions and treatments
- Explain surgical procedures and protocols
- Offer detailed pre-operative and post-operative care instructions
- Assist with cosmetic consultation documentation
- Share evidence-based treatment recommendations
- Support medical dermatology diagnosis assistance
- Provide information about skin cancer screening and prevention
- Help with surgical consent and patient education materials

Always include appropriate medical disclaimers. Emphasize the importance of in-person examination for diagnosis. Reference current clinical guidelines and evidence-based practices."""  # noqa: E501

PERSONAS: dict[str, Persona] = {
    "amanda": Persona(
        id="amanda",
        name="Amanda - Mental Health",
        system_prompt=_AMANDA_PROMPT,
        temperature=PRACTICE_TEMPERATURE,
        document_types=(
            "session-notes",
            "protocols",
            "intake-forms",
            "treatment-plans",
            "assessments",
        ),
    ),
    "robbie": Persona(
        id="robbie",
        name="Robbie - Med Spa",
        system_prompt=_ROBBIE_PROMPT,
        temperature=PRACTICE_TEMPERATURE,
        document_types=(
            "procedures",
            "contraindications",
            "pre-care",
            "post-care",
            "consultations",
            "protocols",
        ),
    ),
    "emmer": Persona(
        id="emmer",
        name="Dr. Emmer - Dermatology",
        system_prompt=_EMMER_PROMPT,
        temperature=PRACTICE_TEMPERATURE,
        document_types=(
            "surgical-protocols",
            "consultations",
            "medical-conditions",
            "post-op-care",
            "consent-forms",
        ),
    ),
}


def general_persona() -> Persona:
    """General medical assistant used when no practice persona applies."""
    return Persona(
        id=GENERAL_PERSONA_ID,
        name="General Assistant",
        system_prompt=get_settings().default_system_prompt,
        temperature=GENERAL_TEMPERATURE,
    )


def resolve_persona(tenant: str | None, custom_prompt: str | None = None) -> Persona:
    """Pick the persona for a tenant id, applying a user's custom prompt.

    Unknown or missing tenant ids get the general assistant. A non-blank
    custom prompt replaces the persona prompt but keeps its temperature.
    """
    persona = PERSONAS.get(tenant or "") or general_persona()
    if custom_prompt and custom_prompt.strip():
        persona = replace(persona, system_prompt=custom_prompt.strip())
    return persona


def is_known_tenant(tenant: str) -> bool:
    return tenant in PERSONAS or tenant == GENERAL_PERSONA_ID
