"""AestheFit backend services: prompt assembly, Gemini calls and the chat/curation flows."""
