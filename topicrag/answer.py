"""Answer generation from retrieved context.

Two modes, chosen by ``allow_model_knowledge``:
- hybrid: the model may fall back on its own knowledge
- strict: context only; with no context at all the model is not called
"""

from dataclasses import dataclass, field

from .config import log
from .retrieval import build_context, select_context_chunks
from .session import recent_context

NO_INFO_ANSWER = "I don't have enough information in my knowledge base to answer that question."

HYBRID_SYSTEM_PROMPT = """You are a helpful AI assistant with access to both context information and your own knowledge.

INSTRUCTIONS:
1. Evaluate if the provided context is relevant and helpful for answering the question
2. If the context directly addresses the question, use it as your primary source
3. If the context is irrelevant, incomplete, or doesn't contain the answer, IGNORE it and use your own knowledge instead
4. Do NOT say "the context doesn't contain this information" - just answer the question using your knowledge
5. Be natural, helpful, and informative in your responses

Remember: You have permission to use your internal knowledge when the context isn't useful."""

STRICT_SYSTEM_PROMPT = f"""You are a helpful AI assistant that can only use the provided context to answer questions.

STRICT RULES:
1. Only use information from the provided context
2. If the context doesn't contain enough information to answer the question, respond with: "{NO_INFO_ANSWER}"
3. Never use your internal knowledge, even if you know the answer
4. Be accurate and only state what is explicitly supported by the context"""

TEMPERATURE = 0.2
MAX_TOKENS = 1024


@dataclass
class AnswerDraft:
    text: str
    context_chunks: list = field(default_factory=list)
    generated: bool = False
    usage: dict = field(default_factory=dict)


def system_prompt(allow_model_knowledge: bool) -> str:
    return HYBRID_SYSTEM_PROMPT if allow_model_knowledge else STRICT_SYSTEM_PROMPT


def build_prompt(question: str, context: str, conversation: str = "") -> str:
    prompt = f"--- CONTEXT START ---\n{context or 'No relevant context found.'}\n--- CONTEXT END ---\n"
    if conversation:
        prompt += f"\n\n--- RECENT CONVERSATION ---\n{conversation}"
    prompt += f"\n\n--- QUESTION ---\n{question}"
    return prompt


def synthesize_answer(generator, question: str, chunks: list, state,
                      allow_model_knowledge: bool = True,
                      max_context_length: int = 6000) -> AnswerDraft:
    """Generate an answer for ``question`` from ``chunks``.

    Generator failures propagate to the caller.
    """
    if not chunks and not allow_model_knowledge:
        log.info("strict mode and no relevant chunks, skipping generation")
        return AnswerDraft(text=NO_INFO_ANSWER)

    context_chunks = select_context_chunks(chunks, max_context_length)
    context = build_context(chunks, max_context_length)
    prompt = build_prompt(question, context, recent_context(state))
    log.info("generating answer using %d chunks (%d in context)", len(chunks), len(context_chunks))

    result = generator.generate(
        system_prompt(allow_model_knowledge),
        prompt,
        temperature=TEMPERATURE,
        max_tokens=MAX_TOKENS,
    )
    return AnswerDraft(text=result.text, context_chunks=context_chunks, generated=True,
                       usage=dict(getattr(result, "usage", {}) or {}))
