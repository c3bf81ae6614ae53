"""Voice prompts for the tutoring menu."""

LANGUAGE_SELECT = (
    "Welcome to {app_name}, your AI powered educational assistant. "
    "For English, press 1. Hindi ke liye, 2 dabaiye."
)

MAIN_MENU = (
    "Press 1 to ask a question. "
    "Press 2 to stop recording. "
    "Press 3 to get the answer. "
    "Press 4 to get a summary of your last questions on a subject. "
    "Press 5 to return to the main menu. "
    "Press 9 to end the call."
)

ASK_QUESTION = "Please ask your educational question after the beep. Press 2 to stop recording."

QUESTION_RECEIVED = (
    "Thank you. Your question is being processed. "
    "Press 3 to hear the answer, or press 1 to ask another question."
)

AFTER_QUESTION_OPTIONS = "Press 3 for the answer, or press 1 for a new question."

STILL_PROCESSING = "Your question is still being processed. Please wait a moment and press 3 again."

NOTHING_TO_STOP = "There is no recording in progress. Press 1 to ask a question."

NO_QUESTION = "No question found. Please press 1 to ask a question first."

ANSWER_INTRO = "Here is your answer."

AFTER_ANSWER_OPTIONS = (
    "Press 1 to ask another question, press 4 for a subject summary, "
    "or press 9 to end the call."
)

ASK_SUBJECT = "Please tell me the subject you want summarized, then press the pound key."

SUMMARY_INTRO = "Here is your learning summary for {subject}, based on your last {count} questions."

NO_HISTORY = (
    "You have not asked any questions about {subject} yet. "
    "Please ask some questions first, then request a summary."
)

INVALID_OPTION = "Invalid option. Returning to the main menu."

GOODBYE = "Thank you for using {app_name}. Goodbye!"

# Degraded paths
TRANSCRIPTION_FAILED = "Sorry, I could not understand your recording. Please try asking again."

ANSWER_FAILED = "Sorry, I encountered an error processing your question. Please try again."

AI_UNAVAILABLE = "Sorry, the AI service is not available right now. Please try again later."

HISTORY_UNAVAILABLE = "Sorry, question history is not available right now, so summaries cannot be made."

SUMMARY_FAILED = "Sorry, I encountered an error generating your summary. Please try again."

# Gateway voices per language
VOICES = {
    "en": ("Polly.Joanna", "en-US"),
    "hi": ("Polly.Aditi", "hi-IN"),
}
