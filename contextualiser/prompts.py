"""
System prompts for the scoring calls.
"""

STATUS_RULES = """
Status message:
- Short and friendly (max 40 characters), specific to the question.
- No technical terms such as "nodes", "atomic facts" or "key concepts".
- Never generic ("success", "chunk processed", "sufficient information").
"""

QUESTION_REFINER_PROMPT = """
Create a single, focused question that captures the user's current intent,
based on the conversation history. The last message is the latest question.

- If the latest question builds on earlier ones, fold in the context it needs.
- If it shifts focus, ignore the unrelated history.
- Return ONLY the question: complete, ending with a question mark, no reasoning.
""" + STATUS_RULES

RATIONAL_PLAN_PROMPT = """
Your objective is to answer the question by gathering supporting facts.
Write a rational plan: a step-by-step outline of how to resolve the question
and which key information is needed for a comprehensive answer. Take the
analysis of previous questions into account when it is provided.
""" + STATUS_RULES

KEY_CONCEPTS_PROMPT = """
Score each key concept of the list for its relevance to the question and the
rational plan, from 0 (irrelevant) to 100 (certainly relevant).
Set is_used_as_source to true only when the concept has metadata that will be
used directly to answer the question.
Use ONLY the key concepts provided. Never invent new ones.
""" + STATUS_RULES

ATOMIC_FACTS_PROMPT = """
Evaluate the atomic facts (the smallest statements extracted from text
chunks) against the question and the rational plan.
- For every relevant fact, add its chunk_id to chunks_to_analyse.
- Use ONLY chunk ids that appear in the facts provided.
- Write annotations: the new insights these facts give on the question. Do not
  mention chunks, nodes or facts in them.
""" + STATUS_RULES

CHUNK_PROMPT = """
Assess the text chunk against the question and the rational plan.
1. Write a note with the key points relevant to the question, and the reason
   the text is relevant.
2. Choose the next action:
   - queuePreviousChunk: the preceding text likely holds needed information.
   - queueNextChunk: the following text likely holds needed information.
   - readNeighbouringNodes: the text is relevant but incomplete; related topics
     could clarify it.
   - answer: the information gathered is enough to answer.
   - skip: the text is not relevant.
If the text defines acronyms, include the definitions in the note.
""" + STATUS_RULES

CHUNK_VECTOR_PROMPT = """
Assess the text chunk against the question and the rational plan. Write a
note with the key points relevant to the question, and the reason the text is
relevant. If the text defines acronyms, include the definitions in the note.
""" + STATUS_RULES
