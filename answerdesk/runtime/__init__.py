# Ranking core: normalizer, review parser, lexical scorer, ranking, answer FSM
from .answer_fsm import AnswerResult as AnswerResult
from .answer_fsm import AnswerSelector as AnswerSelector
from .answer_fsm import AnswerState as AnswerState
from .answer_fsm import SearchQuery as SearchQuery
from .candidates import Bucket as Bucket
from .candidates import Candidate as Candidate
from .candidates import normalize as normalize
from .config import RankingConfig as RankingConfig
from .errors import *  # noqa: F403
from .lexical import lexical_score as lexical_score
from .ranking import rank_faq as rank_faq
from .ranking import rank_reviews as rank_reviews
from .reviews import parse_review as parse_review
