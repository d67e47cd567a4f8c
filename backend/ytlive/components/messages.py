"""Chat message templates."""

ONBOARDING_MESSAGE = (
    "I am ON! Commands: !points, !hours, !top, !tophours, !gamble <amount|all>, !ask <question>"
)

WELCOME_TEMPLATES = [
    "Welcome to the stream, {name}!",
    "Hey {name}, glad you're here! Type !points to see your balance.",
    "{name} just joined the chat, say hi!",
    "Good to see you, {name}! Enjoy the stream.",
    "Welcome {name}! Chat to earn points every 10 minutes.",
]

WELCOME_BACK_TEMPLATES = [
    "Welcome back, {name}! You were away for {minutes} minutes.",
    "{name} is back after {minutes} minutes!",
    "Look who's back! {name} returns after {minutes} minutes.",
]

MODERATION_WARNING = "{name}, please don't spam or post links. You've been timed out for {seconds} seconds."

NO_VIEWERS = "No viewers found!"
UNSEEN_VIEWER = "{name}, you haven't watched any streams yet!"

IDENTITY_ANSWER = "I'm this channel's chat bot! I keep track of points and answer questions with !ask."
ASK_APOLOGY = "{name}, sorry, I couldn't process your question."
