from .errors import (
    FulfillmentError, ValidationError, InsufficientStock, InvalidUnitState, InvalidTransition,
    TerminalStateViolation, NoEligibleCounterparties, NotFound, UpstreamTimeout,
    ConcurrentModification
)
from .clock import Clock, FixedClock
from .auth import get_current_user
from .ledger import InventoryLedger
from .matcher import EligibilityMatcher, EntityFilter, DonorCriteria, MatchResult
from .state_machine import RequestStateMachine
from .fanout import FanoutDispatcher, FanoutResult, CandidateFailure
from .engine import FulfillmentEngine
from .sweeper import ExpirySweeper
from .wiring import build_engine, get_engine
