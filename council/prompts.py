"""Prompt templates, tool specs and structured-output schemas for the council."""

from council.models import DebatePhase, ToolSpec

# --- Tools ---

ASK_USER = "askUser"
SEARCH_WEB = "search_web"

ASK_USER_TOOL = ToolSpec(
    name=ASK_USER,
    description=(
        "Ask the human user a clarifying question. "
        "The question MUST be in the same language as the debate topic."
    ),
    parameters={"question": "The question to ask the user."},
    required=["question"],
)

SEARCH_WEB_TOOL = ToolSpec(
    name=SEARCH_WEB,
    description="Search the internet for real-time facts, news, or statistics to verify arguments.",
    parameters={"query": "The search query to execute."},
    required=["query"],
)

# --- Agent turns ---

SEARCH_HINT_NATIVE = "- OPTIONAL: Use Google Search ONLY if you need to verify a specific statistic."
SEARCH_HINT_TOOL = "- OPTIONAL: Use 'search_web' tool to find real-time facts if necessary."
SEARCH_HINT_NONE = "- Use your knowledge base to verify facts."

PHASE_INSTRUCTIONS = {
    DebatePhase.OPENING: """Phase: OPENING ARGUMENTS.
- State your persona's initial stance on "{topic}".
{search_hint}
- Keep it under 100 words.""",
    DebatePhase.REBUTTAL: """Phase: CROSS-EXAMINATION.
- Identify a weakness in a previous argument.
{search_hint}
- Be sharp and critical.
- Keep it under 150 words.""",
    DebatePhase.SYNTHESIS: """Phase: SYNTHESIS.
- Reflect on critiques.
- Refine your stance towards a practical solution.
- Keep it under 100 words.""",
}

DEFAULT_PHASE_INSTRUCTION = 'Discuss the topic "{topic}".'

CONTEXT_BLOCK = """
REFERENCE MATERIAL / CONTEXT (PRIORITIZE THESE FACTS):
{documents}
"""

AGENT_TURN = """Current Debate Topic: "{topic}"
{context}
TRANSCRIPT HISTORY (Recent):
{history}
---
YOUR INSTRUCTIONS:
{instructions}

CRITICAL RULES:
1. LANGUAGE: You MUST generate your response (and any tool arguments) in the same language as the debate topic ("{topic}"). Do NOT translate the topic, but speak in that language.
2. If the Moderator has given guidance in the transcript, you MUST follow it.
{ask_user_rule}"""

ASK_USER_RULE = (
    "3. INTERACTIVE: If you need to know the User's opinion on a subjective matter, preference, "
    "or moral dilemma, USE the 'askUser' tool. Do not guess. Asking the user is encouraged."
)

TOOL_RESUME = """Current Topic: "{topic}"
System: You previously called tool '{tool_name}'. Result: {tool_result}.
Continue your turn immediately based on this info.

IMPORTANT: Your response MUST be in the same language as the topic ("{topic}")."""

# --- Fallacy analysis ---

FALLACY_SYSTEM = "You are a logic analyzer. Output JSON only."

FALLACY = """Analyze the following debate argument for logical fallacies.
Topic: "{topic}"
Argument: "{text}"

Common fallacies to watch for: Ad Hominem, Strawman, Red Herring, Slippery Slope, Appeal to Authority, False Dichotomy, Circular Reasoning.

If a clear logical fallacy is present, return JSON:
{{ "found": true, "name": "Fallacy Name", "reason": "Short explanation (max 15 words)", "severity": "minor" | "major" }}

If no fallacy is found or it's just a strong opinion, return:
{{ "found": false }}"""

FALLACY_SCHEMA = {
    "type": "object",
    "properties": {
        "found": {"type": "boolean"},
        "name": {"type": "string"},
        "reason": {"type": "string"},
        "severity": {"type": "string", "enum": ["minor", "major"]},
    },
    "required": ["found"],
}

# --- Orchestrator ---

ORCHESTRATOR_SYSTEM = "You are the Orchestrator of the LLM Council. Decide how the debate proceeds."

ORCHESTRATOR = """Analyze the debate transcript on "{topic}".
Current Round: {round}

Transcript:
{transcript}

Determine next steps.
1. Should the debate conclude? (If Round > 3, prefer true. If Round > {conclude_after}, MUST be true).
2. Provide guidance for the next round.
3. Should we consult the user?
4. CRITICAL: Is the current council lacking specific expertise (e.g., Legal, Medical, Scientific) that is hindering the debate?
   If yes, you may SUMMON a temporary "Guest Expert".

   CONSTRAINT: Do NOT summon a guest if Round > {guest_limit}. It is too late in the debate.

   Define their Name, Role (e.g. 'Constitutional Lawyer'), and System Prompt.
   This agent will speak ONCE immediately to clarify facts.

IMPORTANT: The 'guidance', 'reason' and guest details MUST be in the same language as the topic ("{topic}").

Return JSON matching the schema."""

ORCHESTRATOR_SCHEMA = {
    "type": "object",
    "properties": {
        "shouldConclude": {"type": "boolean"},
        "guidance": {"type": "string"},
        "shouldConsultUser": {"type": "boolean"},
        "summonGuest": {
            "type": "object",
            "properties": {
                "name": {"type": "string"},
                "role": {"type": "string"},
                "systemPrompt": {"type": "string"},
                "reason": {"type": "string", "description": "Why is this guest needed?"},
            },
        },
    },
}

# --- Voting / verdict ---

VOTE = """Cast a vote for the best argument on "{topic}".
Candidates:
{candidates}
Recent Context:
{transcript}

Set 'targetAgentId' to the id of the candidate you vote for and 'score' between 1 and 10.
IMPORTANT: The 'reason' MUST be in the same language as the topic ("{topic}").
Return JSON."""

VOTE_SCHEMA = {
    "type": "object",
    "properties": {
        "targetAgentId": {"type": "string"},
        "score": {"type": "number"},
        "reason": {"type": "string"},
    },
    "required": ["targetAgentId", "score", "reason"],
}

VERDICT_SYSTEM = "You are the Chairperson. Synthesize a practical consensus."

VERDICT = """Topic: {topic}
Council members:
{roster}

Votes:
{votes}

Transcript:
{transcript}

As the Chairperson, synthesize the "Golden Mean" or a practical conclusion from this debate.
Do NOT just summarize who won. Propose a concrete solution or agreement that synthesizes the best parts of the arguments.

IMPORTANT: The 'summary' and 'keyTakeaways' MUST be in the same language as the topic ("{topic}").

Generate final verdict JSON."""

VERDICT_SCHEMA = {
    "type": "object",
    "properties": {
        "winnerId": {"type": "string"},
        "summary": {"type": "string", "description": "The 'Golden Mean' or synthesized practical conclusion."},
        "keyTakeaways": {"type": "array", "items": {"type": "string"}},
    },
}

FOLLOW_UP_SYSTEM = "You are the Chairperson. Answer helpfully based on the debate context."

FOLLOW_UP = """The user has a follow-up question after the debate verdict.
User Question: "{question}"
Verdict Summary: "{summary}"
Key Takeaways:
{takeaways}

Answer the user as the Chairperson.
IMPORTANT: Answer in the same language as the User Question."""

# --- Engine notices ---

CONSULTATION_QUESTION = "The floor is yours. What feedback do you have for the Council?"
STOP_NOTICE = "Debate stop requested. Concluding current phase..."
CONTEXT_NOTICE = "New Research Context added to Council knowledge base."
SUMMON_NOTICE = (
    "(Summoning Expert) I am calling upon {name}, a {role}, to clarify this point because: {reason}"
)


def with_persona(persona: str, instruction: str) -> str:
    """Prefix a chairperson system instruction with the configured persona, if any."""
    persona = persona.strip()
    return f"{persona}\n\n{instruction}" if persona else instruction
