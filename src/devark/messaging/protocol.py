"""The closed set of message tags exchanged with the UI.

Every message is ``{"type": <tag>, "data": <payload or absent>}``. Tags
owned by a handler are listed in ``HANDLER_DEPENDENT_TYPES``; those that
arrive before the handlers are built are queued rather than rejected.
"""

from dataclasses import dataclass, field
from enum import Enum
from typing import Any

from ..errors import InvalidInputError


class MessageType(str, Enum):
    # Providers
    GET_PROVIDERS = "getProviders"
    DETECT_PROVIDERS = "detectProviders"
    DETECT_PROVIDER = "detectProvider"
    SWITCH_PROVIDER = "switchProvider"
    VERIFY_API_KEY = "verifyApiKey"
    SET_OLLAMA_MODEL = "setOllamaModel"
    SET_OPENROUTER_MODEL = "setOpenRouterModel"
    TEST_PROVIDERS = "testProviders"
    TRACK_LLM_SELECTOR_OPENED_FOOTER = "trackLlmSelectorOpenedFooter"
    TRACK_LLM_SELECTOR_OPENED_SETTINGS = "trackLlmSelectorOpenedSettings"

    # Prompt analysis
    ANALYZE_PROMPT = "analyzePrompt"
    USE_IMPROVED_PROMPT = "useImprovedPrompt"
    TOGGLE_AUTO_ANALYZE = "toggleAutoAnalyze"
    GET_AUTO_ANALYZE_STATUS = "getAutoAnalyzeStatus"
    TOGGLE_RESPONSE_ANALYSIS = "toggleResponseAnalysis"
    GET_RESPONSE_ANALYSIS_STATUS = "getResponseAnalysisStatus"

    # Prompt lab
    ANALYZE_PROMPT_LAB_PROMPT = "analyzePromptLabPrompt"
    SAVE_PROMPT_TO_LIBRARY = "savePromptToLibrary"
    GET_SAVED_PROMPTS = "getSavedPrompts"
    DELETE_SAVED_PROMPT = "deleteSavedPrompt"
    RENAME_PROMPT = "renamePrompt"
    UPDATE_SAVED_PROMPT = "updateSavedPrompt"
    SEARCH_SAVED_PROMPTS = "searchSavedPrompts"

    # Sessions
    V2_GET_ACTIVE_SESSION = "v2GetActiveSession"
    SWITCH_SESSION = "switchSession"
    MARK_SESSION_AS_READ = "markSessionAsRead"
    V2_GET_SESSION_LIST = "v2GetSessionList"
    V2_GET_PROMPTS = "v2GetPrompts"
    LOAD_MORE_PROMPTS = "loadMorePrompts"
    V2_GET_DAILY_STATS = "v2GetDailyStats"
    RENAME_SESSION = "renameSession"
    DELETE_SESSION = "deleteSession"
    V2_GET_SESSION_CONTEXT = "v2GetSessionContext"
    V2_GET_CONTEXT_SUMMARY = "v2GetContextSummary"
    GET_SESSION_MESSAGES = "getSessionMessages"

    # Goals
    V2_GET_GOAL_STATUS = "v2GetGoalStatus"
    V2_SET_GOAL = "v2SetGoal"
    V2_COMPLETE_GOAL = "v2CompleteGoal"
    COMPLETE_GOAL = "completeGoal"
    V2_CLEAR_GOAL = "v2ClearGoal"
    V2_INFER_GOAL = "v2InferGoal"
    V2_MAYBE_LATER_GOAL = "v2MaybeLaterGoal"
    V2_DONT_ASK_GOAL = "v2DontAskGoal"
    V2_ANALYZE_GOAL_PROGRESS = "v2AnalyzeGoalProgress"
    EDIT_GOAL = "editGoal"

    # Cloud and sync
    GET_CLOUD_STATUS = "getCloudStatus"
    LOGIN_WITH_GITHUB = "loginWithGithub"
    AUTHENTICATE = "authenticate"
    LOGOUT = "logout"
    REQUEST_LOGOUT_CONFIRMATION = "requestLogoutConfirmation"
    CHECK_AUTH_STATUS = "checkAuthStatus"
    SYNC_NOW = "syncNow"
    PREVIEW_SYNC = "previewSync"
    SYNC_WITH_FILTERS = "syncWithFilters"
    GET_SYNC_STATUS = "getSyncStatus"
    CANCEL_SYNC = "cancelSync"
    UPLOAD_CURRENT_SESSION = "uploadCurrentSession"
    UPLOAD_RECENT_SESSIONS = "uploadRecentSessions"

    # Hooks
    GET_DETECTED_TOOLS = "getDetectedTools"
    GET_RECENT_PROJECTS = "getRecentProjects"
    SELECT_PROJECT_FOLDER = "selectProjectFolder"
    INSTALL_HOOKS = "installHooks"
    UNINSTALL_HOOKS = "uninstallHooks"
    INSTALL_CURSOR_HOOKS = "installCursorHooks"
    GET_HOOKS_STATUS = "getHooksStatus"
    GET_CLAUDE_HOOKS_STATUS = "getClaudeHooksStatus"
    INSTALL_CLAUDE_HOOKS = "installClaudeHooks"

    # Config and local data
    GET_CONFIG = "getConfig"
    UPDATE_CONFIG = "updateConfig"
    COMPLETE_ONBOARDING = "completeOnboarding"
    GET_FEATURE_MODELS = "getFeatureModels"
    SET_FEATURE_MODEL = "setFeatureModel"
    SET_FEATURE_MODELS_ENABLED = "setFeatureModelsEnabled"
    RESET_FEATURE_MODELS = "resetFeatureModels"
    GET_AVAILABLE_MODELS_FOR_FEATURE = "getAvailableModelsForFeature"
    CLEAR_LOCAL_DATA = "clearLocalData"
    CLEAR_PROMPT_HISTORY = "clearPromptHistory"
    GET_PROMPT_HISTORY = "getPromptHistory"

    # Coaching
    USE_COACHING_SUGGESTION = "useCoachingSuggestion"
    DISMISS_COACHING_SUGGESTION = "dismissCoachingSuggestion"
    GET_COACHING_STATUS = "getCoachingStatus"
    GET_COACHING_FOR_PROMPT = "getCoachingForPrompt"

    # Stats
    V2_ANALYZE_PROMPT_V2 = "v2AnalyzePromptV2"
    V2_GET_WEEKLY_TREND = "v2GetWeeklyTrend"
    V2_GET_STREAK = "v2GetStreak"
    V2_GET_PERSONAL_COMPARISON = "v2GetPersonalComparison"

    # Answered by the message handler itself
    CANCEL_LOADING = "cancelLoading"
    TAB_CHANGED = "tabChanged"
    GET_EDITOR_INFO = "getEditorInfo"
    OPEN_EXTERNAL = "openExternal"
    TEST = "test"

    # Core -> UI
    ERROR = "error"
    CONFIRMATION_REQUIRED = "confirmationRequired"
    TEST_RESPONSE = "testResponse"
    EDITOR_INFO = "editorInfo"
    LOADING_CANCELLED = "loadingCancelled"
    NEW_PROMPTS_DETECTED = "newPromptsDetected"
    PROMPT_ANALYZING = "promptAnalyzing"
    SCORE_RECEIVED = "scoreReceived"
    ANALYSIS_FAILED = "analysisFailed"
    PROMPT_HISTORY_LOADED = "promptHistoryLoaded"
    PROVIDERS_UPDATE = "providersUpdate"
    VERIFY_API_KEY_RESULT = "verifyApiKeyResult"
    TEST_PROVIDERS_RESULT = "testProvidersResult"
    AUTO_ANALYZE_STATUS = "autoAnalyzeStatus"
    RESPONSE_ANALYSIS_STATUS = "responseAnalysisStatus"
    IMPROVED_PROMPT_READY = "improvedPromptReady"
    PROMPT_LAB_SCORE_RECEIVED = "promptLabScoreReceived"
    SAVED_PROMPTS_LOADED = "savedPromptsLoaded"
    V2_ACTIVE_SESSION = "v2ActiveSession"
    V2_SESSION_LIST = "v2SessionList"
    V2_PROMPTS = "v2Prompts"
    V2_DAILY_STATS = "v2DailyStats"
    V2_SESSION_CONTEXT = "v2SessionContext"
    V2_CONTEXT_SUMMARY = "v2ContextSummary"
    SESSION_MESSAGES = "sessionMessages"
    SESSION_RENAMED = "sessionRenamed"
    SESSION_DELETED = "sessionDeleted"
    V2_GOAL_STATUS = "v2GoalStatus"
    V2_GOAL_SET = "v2GoalSet"
    V2_GOAL_COMPLETED = "v2GoalCompleted"
    V2_GOAL_CLEARED = "v2GoalCleared"
    V2_GOAL_INFERENCE = "v2GoalInference"
    V2_GOAL_INFERENCE_DISMISSED = "v2GoalInferenceDismissed"
    V2_GOAL_PROGRESS_ANALYSIS = "v2GoalProgressAnalysis"
    OPEN_GOAL_EDITOR = "openGoalEditor"
    CLOUD_STATUS = "cloudStatus"
    AUTH_STATUS_RESULT = "authStatusResult"
    SYNC_STATUS = "syncStatus"
    SYNC_PREVIEW = "syncPreview"
    SYNC_PROGRESS = "syncProgress"
    SYNC_COMPLETE = "syncComplete"
    SYNC_CANCELLED = "syncCancelled"
    DETECTED_TOOLS = "detectedTools"
    RECENT_PROJECTS = "recentProjects"
    PROJECT_FOLDER_SELECTED = "projectFolderSelected"
    HOOKS_STATUS = "hooksStatus"
    INSTALL_HOOKS_COMPLETE = "installHooksComplete"
    UNINSTALL_HOOKS_COMPLETE = "uninstallHooksComplete"
    CONFIG_LOADED = "configLoaded"
    ONBOARDING_COMPLETE = "onboardingComplete"
    FEATURE_MODELS_UPDATE = "featureModelsUpdate"
    AVAILABLE_MODELS_FOR_FEATURE = "availableModelsForFeature"
    LOCAL_DATA_CLEARED = "localDataCleared"
    COACHING_STATUS = "coachingStatus"
    COACHING_UPDATED = "coachingUpdated"
    V2_ANALYSIS_RESULT = "v2AnalysisResult"
    V2_WEEKLY_TREND = "v2WeeklyTrend"
    V2_STREAK = "v2Streak"
    V2_PERSONAL_COMPARISON = "v2PersonalComparison"


T = MessageType

HANDLER_DEPENDENT_TYPES: frozenset[MessageType] = frozenset({
    T.GET_PROVIDERS, T.DETECT_PROVIDERS, T.DETECT_PROVIDER, T.SWITCH_PROVIDER,
    T.VERIFY_API_KEY, T.SET_OLLAMA_MODEL, T.SET_OPENROUTER_MODEL, T.TEST_PROVIDERS,
    T.TRACK_LLM_SELECTOR_OPENED_FOOTER, T.TRACK_LLM_SELECTOR_OPENED_SETTINGS,
    T.ANALYZE_PROMPT, T.USE_IMPROVED_PROMPT, T.TOGGLE_AUTO_ANALYZE, T.GET_AUTO_ANALYZE_STATUS,
    T.TOGGLE_RESPONSE_ANALYSIS, T.GET_RESPONSE_ANALYSIS_STATUS,
    T.ANALYZE_PROMPT_LAB_PROMPT, T.SAVE_PROMPT_TO_LIBRARY, T.GET_SAVED_PROMPTS,
    T.DELETE_SAVED_PROMPT, T.RENAME_PROMPT, T.UPDATE_SAVED_PROMPT, T.SEARCH_SAVED_PROMPTS,
    T.V2_GET_ACTIVE_SESSION, T.SWITCH_SESSION, T.MARK_SESSION_AS_READ, T.V2_GET_SESSION_LIST,
    T.V2_GET_PROMPTS, T.LOAD_MORE_PROMPTS, T.V2_GET_DAILY_STATS, T.RENAME_SESSION,
    T.DELETE_SESSION, T.V2_GET_SESSION_CONTEXT, T.V2_GET_CONTEXT_SUMMARY, T.GET_SESSION_MESSAGES,
    T.V2_GET_GOAL_STATUS, T.V2_SET_GOAL, T.V2_COMPLETE_GOAL, T.COMPLETE_GOAL, T.V2_CLEAR_GOAL,
    T.V2_INFER_GOAL, T.V2_MAYBE_LATER_GOAL, T.V2_DONT_ASK_GOAL, T.V2_ANALYZE_GOAL_PROGRESS,
    T.EDIT_GOAL,
    T.GET_CLOUD_STATUS, T.LOGIN_WITH_GITHUB, T.AUTHENTICATE, T.LOGOUT,
    T.REQUEST_LOGOUT_CONFIRMATION, T.CHECK_AUTH_STATUS, T.SYNC_NOW, T.PREVIEW_SYNC,
    T.SYNC_WITH_FILTERS, T.GET_SYNC_STATUS, T.CANCEL_SYNC, T.UPLOAD_CURRENT_SESSION,
    T.UPLOAD_RECENT_SESSIONS,
    T.GET_DETECTED_TOOLS, T.GET_RECENT_PROJECTS, T.SELECT_PROJECT_FOLDER, T.INSTALL_HOOKS,
    T.UNINSTALL_HOOKS, T.INSTALL_CURSOR_HOOKS, T.GET_HOOKS_STATUS, T.GET_CLAUDE_HOOKS_STATUS,
    T.INSTALL_CLAUDE_HOOKS,
    T.GET_CONFIG, T.UPDATE_CONFIG, T.COMPLETE_ONBOARDING, T.GET_FEATURE_MODELS,
    T.SET_FEATURE_MODEL, T.SET_FEATURE_MODELS_ENABLED, T.RESET_FEATURE_MODELS,
    T.GET_AVAILABLE_MODELS_FOR_FEATURE, T.CLEAR_LOCAL_DATA, T.CLEAR_PROMPT_HISTORY,
    T.GET_PROMPT_HISTORY,
    T.USE_COACHING_SUGGESTION, T.DISMISS_COACHING_SUGGESTION, T.GET_COACHING_STATUS,
    T.GET_COACHING_FOR_PROMPT,
    T.V2_ANALYZE_PROMPT_V2, T.V2_GET_WEEKLY_TREND, T.V2_GET_STREAK, T.V2_GET_PERSONAL_COMPARISON,
})

TOP_LEVEL_TYPES: frozenset[MessageType] = frozenset({
    T.CANCEL_LOADING, T.TAB_CHANGED, T.GET_EDITOR_INFO, T.OPEN_EXTERNAL, T.TEST,
})


@dataclass
class Message:
    type: MessageType
    data: Any = field(default=None)

    def to_dict(self) -> dict:
        body: dict = {"type": self.type.value}
        if self.data is not None:
            body["data"] = self.data
        return body


def parse_message(raw: Any) -> Message:
    """Validate a raw ``{type, data}`` object. Raises InvalidInputError."""
    if not isinstance(raw, dict):
        raise InvalidInputError("Message must be an object")
    tag = raw.get("type")
    if not isinstance(tag, str):
        raise InvalidInputError("Message has no type")
    try:
        message_type = MessageType(tag)
    except ValueError:
        raise InvalidInputError(f"Unknown message type: {tag}") from None
    return Message(message_type, raw.get("data"))
