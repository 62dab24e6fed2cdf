"""HabitQuest: gamification engine for habit tracking."""
