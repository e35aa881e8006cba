from dataclasses import dataclass

from rapport.analytics.relationship import RelationshipType
from rapport.analytics.stats import ConversationStats
from rapport.analytics.topics import TopicScore

FALLBACK_RESPONSE = "Unable to generate response at this time."

ROMANTIC_PERSONA = """You are a Gottman-trained relationship coach providing personalized guidance to help someone improve their romantic relationship.
You are analyzing their conversation with their partner and offering advice based on Gottman Method principles."""

PLATONIC_PERSONA = """You are a warm, down-to-earth friendship coach helping someone strengthen a friendship.
You draw on research about adult friendship: responsiveness, active-constructive responding, shared activities and the time it takes to turn acquaintances into close friends.
You are analyzing their conversation with their friend. Keep the tone light and encouraging, never clinical."""

GROUP_PERSONA = """You are a group dynamics coach helping someone understand and improve the energy of a group chat.
You draw on research about group dynamics: psychological safety, balanced participation, inclusion and how roles emerge in groups.
You are analyzing the group's conversation. Speak about patterns in the group, never single anyone out harshly."""

GREETINGS = {
    RelationshipType.ROMANTIC: (
        "Hi! I'm your relationship coach. Ask me anything about you and your partner, "
        "or choose an analysis from the menu."
    ),
    RelationshipType.PLATONIC: (
        "Hey! I'm your friendship coach. Ask me anything about this friendship, "
        "or pick an analysis from the menu."
    ),
    RelationshipType.GROUP: (
        "Hi! I'm your group coach. Ask me about the group's vibe, "
        "or pick an analysis from the menu."
    ),
}

CONTEXTS = {
    "ratio": """Dr. John Gottman's research identified that successful couples maintain a 5:1 ratio of positive to negative interactions during conflict,
and even higher during everyday interactions. This 'magic ratio' is one of the strongest predictors of relationship success.
Positive interactions include expressions of interest, affection, humor, empathy, and acceptance,
while negative interactions include criticism, contempt, defensiveness, and stonewalling.""",
    "horsemen": """Dr. John Gottman identified these four communication patterns as the strongest predictors of relationship failure:
1) Criticism (attacking character vs. addressing behavior)
2) Contempt (superiority, disrespect, mockery)
3) Defensiveness (playing victim, counter-attacking)
4) Stonewalling (emotional withdrawal)

Each horseman has specific antidotes: using "I" statements instead of criticism,
building appreciation to counter contempt, taking responsibility instead of being defensive,
and learning self-soothing techniques to prevent stonewalling.""",
    "love_map": """Dr. John Gottman's Love Map concept refers to the part of your brain where you store all the relevant information
about your partner's life: their hopes, dreams, fears, stresses, and joys.
Having a detailed Love Map of your partner's inner world helps you both handle stressful events and conflict better.
You can build your Love Map by asking open-ended questions and staying curious about your partner's evolving inner world.""",
    "bids": """Dr. John Gottman's research on emotional bids shows that people make countless attempts to connect throughout the day.
These "bids" can be as simple as "Look at that bird" or as direct as "I need a hug." How the other person responds is crucial:
they can "turn toward" (acknowledge and engage), "turn away" (ignore or miss), or "turn against" (reject or respond negatively).
Couples who turn toward each other's bids 86% of the time stay together, while those who do so 33% of the time often do not.""",
    "rupture_repair": """All close relationships experience ruptures: moments when trust is broken or people hurt each other.
What matters most is not avoiding ruptures but learning to repair them effectively.
Successful repair attempts include taking responsibility, offering sincere apologies, validating the other person's feelings,
and committing to behavior change. Failed repairs often involve defensiveness, minimizing the hurt, or rushing to "move on".""",
    "acr": """Shelley Gable's research on capitalization shows that how we respond to someone's good news matters more than how we respond to bad news.
Active-constructive responding (enthusiastic, curious, asking for details) builds closeness.
Passive-constructive ("nice"), active-destructive (pointing out the downside) and passive-destructive (changing the subject) responses erode it.""",
    "shared_interests": """Friendships and groups are held together by shared activities and interests.
People who regularly talk about and do things they both enjoy build closeness faster,
and naming a shared interest is an easy way to suggest the next plan together.""",
    "topic_vibe_check": """Some topics reliably bring warmth and laughter into a conversation while others tend to turn tense.
Knowing which topics carry good energy helps people lean into them and approach the tenser ones with more care.""",
    "topic_champion": """In healthy groups, different people naturally become the go-to voice for different topics.
Recognizing who champions what helps the group appreciate each member and invite quieter members into topics they care about.""",
    "group_energy": """Group energy reflects the balance of positive and negative messages in a group conversation,
and how evenly that energy is spread across members. Groups feel best when participation is balanced
and nobody is consistently left carrying the negativity or the enthusiasm alone.""",
    "friendship_checkin": """Friendships thrive on regular, low-stakes contact and on responsiveness: feeling understood, validated and cared for.
A friendship check-in looks at the tone of recent messages and suggests small ways to keep the connection warm.""",
}


@dataclass(frozen=True)
class AnalysisPrompt:
    context: str
    instruction: str
    temperature: float = 0.4
    word_limit: int = 250
    include_history: bool = False
    include_parent: bool = True


def persona_for(relationship: RelationshipType) -> str:
    match relationship:
        case RelationshipType.ROMANTIC:
            return ROMANTIC_PERSONA
        case RelationshipType.PLATONIC:
            return PLATONIC_PERSONA
        case RelationshipType.GROUP:
            return GROUP_PERSONA


def counterpart_for(relationship: RelationshipType) -> str:
    match relationship:
        case RelationshipType.ROMANTIC:
            return "their partner"
        case RelationshipType.PLATONIC:
            return "their friend"
        case RelationshipType.GROUP:
            return "their group"


def greeting_for(relationship: RelationshipType) -> str:
    return GREETINGS[relationship]


def insufficient_data_message(required: int, available: int) -> str:
    return (
        f"I need at least {required} messages in this conversation to run that analysis, "
        f"and I can only see {available} so far. Keep chatting and try again soon!"
    )


def error_message() -> str:
    return "Sorry, I couldn't finish that analysis right now. Please try again in a little while."


def _horsemen_line(stats: ConversationStats) -> str:
    return ", ".join(f"{name}: {count}" for name, count in stats.horsemen.items())


def summary_prompt(user_name: str, stats: ConversationStats) -> AnalysisPrompt:
    return AnalysisPrompt(
        context=(
            f"{user_name} has a positive-to-negative ratio of {stats.ratio} over the last "
            f"{stats.total_messages} messages. Horsemen: {_horsemen_line(stats)}.\n\n"
            f"{user_name} is unfamiliar with relationship research and any concept you use must be explained briefly."
        ),
        instruction=(
            "Give two observations and two action steps.\n"
            "If they are relevant, use examples from the conversation to support your observations "
            "(positive or negative) and action steps."
        ),
        word_limit=400,
    )


def ratio_prompt(stats: ConversationStats) -> AnalysisPrompt:
    pct = stats.percentages()
    return AnalysisPrompt(
        context=f"""**ANALYSIS RESULTS:**
Total messages analyzed: {stats.total_messages}
- Positive interactions: {stats.positive} ({pct['positive']}%)
- Negative interactions: {stats.negative} ({pct['negative']}%)
- Neutral interactions: {stats.neutral} ({pct['neutral']}%)
- Current positive-to-negative ratio: {stats.ratio}:1

**RESEARCH CONTEXT:** {CONTEXTS['ratio']}""",
        instruction=(
            "First, give a very short explanation of the magic ratio. 1 or 2 short sentences.\n\n"
            "Then, give feedback. Include these statistics in your response and provide specific, "
            "actionable advice to help improve the ratio. Use positive and negative examples from "
            "the conversation to support your advice if they are available."
        ),
        word_limit=150,
    )


def horsemen_prompt(stats: ConversationStats) -> AnalysisPrompt:
    return AnalysisPrompt(
        context=f"""**FOUR HORSEMEN ANALYSIS:**
Total messages analyzed: {stats.total_messages}
- Criticism: {stats.horsemen['criticism']} instances
- Contempt: {stats.horsemen['contempt']} instances
- Defensiveness: {stats.horsemen['defensiveness']} instances
- Total destructive patterns: {stats.horsemen_total} ({stats.horsemen_percent}% of messages)

**RESEARCH CONTEXT:** {CONTEXTS['horsemen']}""",
        instruction=(
            "First, give a very short explanation of the four horsemen. 1 or 2 short sentences.\n\n"
            "Then, give feedback. Include these specific statistics in your response. Explain what these "
            "patterns mean for the relationship and offer antidotes they can use to replace them with "
            "healthier communication. Use examples from the conversation if they are available."
        ),
        word_limit=250,
    )


def love_map_prompt(topic: TopicScore) -> AnalysisPrompt:
    return AnalysisPrompt(
        context=(
            f'**TOPIC ANALYSIS:** Based on semantic analysis of their conversation, the topic "{topic.topic}" '
            f"appears to be under-explored (coverage score: {topic.coverage:.3f}).\n\n"
            f"**RESEARCH CONTEXT:** {CONTEXTS['love_map']}"
        ),
        instruction=(
            "First, give a very short explanation of the love map. 1 or 2 short sentences.\n\n"
            f'Then, briefly explain why "{topic.topic}" matters for building Love Maps and suggest a specific, '
            'thoughtful question to ask. Mark the question clearly with a "QUESTION: " prefix.'
        ),
        temperature=0.6,
        word_limit=220,
        include_parent=False,
    )


def bids_prompt() -> AnalysisPrompt:
    return AnalysisPrompt(
        context=f"**RESEARCH CONTEXT:** {CONTEXTS['bids']}",
        instruction="""First, give a very short explanation of emotional bids. 1 or 2 short sentences.

Then, analyze the conversation history for emotional bids: attempts by either person to connect. Look for:
- Questions, requests, or statements seeking attention or connection
- How the other person responded (turned toward, turned away, or turned against)
- Patterns of connection or disconnection

Provide specific examples from the conversation if you find any bids. If no clear bids are detected,
provide general guidance on recognizing and making bids for connection.""",
        word_limit=250,
    )


def rupture_repair_prompt() -> AnalysisPrompt:
    return AnalysisPrompt(
        context=f"**RESEARCH CONTEXT:** {CONTEXTS['rupture_repair']}",
        instruction="""First, give a very short explanation of the rupture and repair concept. 1 or 2 short sentences.

Then, analyze the conversation history for ruptures (conflicts, hurtful exchanges, breaks in connection) and any repair attempts.

If you find moderate to severe conflicts that didn't go well, provide a specific repair playbook:
1. What rupture occurred (be specific about the hurt)
2. Steps for effective repair tailored to this situation
3. What to say or do to rebuild trust
4. How to prevent similar ruptures

If there was a minor conflict that went decently well, mention what went well. Don't be nitpicky.
If no recent conflicts are detected, offer a complimentary message.""",
        word_limit=200,
    )


def acr_prompt() -> AnalysisPrompt:
    return AnalysisPrompt(
        context=f"**RESEARCH CONTEXT:** {CONTEXTS['acr']}",
        instruction="""First, give a very short explanation of active-constructive responding. 1 or 2 short sentences.

Then, find moments in the conversation where someone shared good news or excitement and describe how the other person responded.
Quote one example if available and suggest an active-constructive reply they could use next time.""",
        word_limit=200,
    )


def shared_interests_prompt(topic: TopicScore, names: list[str]) -> AnalysisPrompt:
    return AnalysisPrompt(
        context=(
            f'**TOPIC ANALYSIS:** Across the conversation between {", ".join(names)}, "{topic.topic}" '
            f"is the interest everyone brings up (messages on topic: {topic.support}).\n\n"
            f"**RESEARCH CONTEXT:** {CONTEXTS['shared_interests']}"
        ),
        instruction=(
            f'Point out that "{topic.topic}" is a shared interest, say why leaning into shared interests '
            "strengthens the connection, and suggest one concrete plan or conversation starter around it."
        ),
        temperature=0.6,
        word_limit=200,
    )


def topic_vibe_check_prompt(warmest: TopicScore, coolest: TopicScore | None) -> AnalysisPrompt:
    lines = [f'- Warmest topic: "{warmest.topic}" (sentiment score {warmest.score:+.2f})']
    if coolest is not None and coolest.topic != warmest.topic:
        lines.append(f'- Least explored topic: "{coolest.topic}" (coverage {coolest.coverage:.3f})')
    return AnalysisPrompt(
        context="**TOPIC VIBE CHECK:**\n" + "\n".join(lines) + f"\n\n**RESEARCH CONTEXT:** {CONTEXTS['topic_vibe_check']}",
        instruction=(
            "Describe what's going well around the warmest topic and encourage them to lean into it. "
            "If a least explored topic is listed, suggest a gentle way to bring it up."
        ),
        temperature=0.5,
        word_limit=180,
    )


def topic_champion_prompt(champions: dict[str, str]) -> AnalysisPrompt:
    lines = "\n".join(f'- "{topic}": {name}' for topic, name in champions.items()) or "- No clear champions yet"
    return AnalysisPrompt(
        context=f"**TOPIC CHAMPIONS:**\n{lines}\n\n**RESEARCH CONTEXT:** {CONTEXTS['topic_champion']}",
        instruction=(
            "Celebrate who champions which topic in a playful way, then suggest one way the group "
            "could invite quieter members into the conversation."
        ),
        temperature=0.6,
        word_limit=200,
    )


def group_energy_prompt(
    energy: int, stats: ConversationStats, member_energy: dict[str, int]
) -> AnalysisPrompt:
    members = "\n".join(f"- {name}: {score}/100" for name, score in member_energy.items())
    return AnalysisPrompt(
        context=f"""**GROUP ENERGY:**
Overall energy score: {energy}/100 over {stats.total_messages} messages
- Positive: {stats.positive}, Negative: {stats.negative}, Neutral: {stats.neutral}
Energy by member:
{members}

**RESEARCH CONTEXT:** {CONTEXTS['group_energy']}""",
        instruction=(
            "Explain the group's energy score in plain words, note whether energy is evenly spread, "
            "and give two light suggestions to keep the group's energy up."
        ),
        word_limit=180,
    )


def friendship_checkin_prompt(stats: ConversationStats) -> AnalysisPrompt:
    pct = stats.percentages()
    return AnalysisPrompt(
        context=f"""**FRIENDSHIP CHECK-IN:**
Messages analyzed: {stats.total_messages}
- Positive: {stats.positive} ({pct['positive']}%)
- Negative: {stats.negative} ({pct['negative']}%)
- Neutral: {stats.neutral} ({pct['neutral']}%)

**RESEARCH CONTEXT:** {CONTEXTS['friendship_checkin']}""",
        instruction=(
            "Give a friendly check-in on how this friendship is going based on these numbers and the "
            "conversation, then suggest one small thing they could do this week to stay connected."
        ),
        temperature=0.5,
        word_limit=200,
    )


def reply_prompt(stats: ConversationStats) -> AnalysisPrompt:
    return AnalysisPrompt(
        context=(
            f"Recent conversation statistics: ratio {stats.ratio}:1 over {stats.total_messages} messages, "
            f"horsemen {_horsemen_line(stats)}."
        ),
        instruction="Respond empathetically to their last message.",
        temperature=0.5,
        word_limit=120,
        include_history=True,
    )
