"""Domain services: ownership, quizzes, invitations, submissions and leaderboards."""
