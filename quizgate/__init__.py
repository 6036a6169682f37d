"""QuizGate: quiz authoring, invitations, attempts and public leaderboards."""
