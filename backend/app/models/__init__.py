from .ledger import Account, AccountTransaction
from .users import User, UserBadge, QuizAttempt, FlashcardMastery
from .courses import Course, Topic, Flashcard, Question, Enrollment

__all__ = [
    'Account', 'AccountTransaction',
    'User', 'UserBadge', 'QuizAttempt', 'FlashcardMastery',
    'Course', 'Topic', 'Flashcard', 'Question', 'Enrollment',
]
