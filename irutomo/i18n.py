"""User-facing strings for the three supported locales (ko/ja/en)."""

from typing import Literal

Locale = Literal["ko", "ja", "en"]

SUPPORTED_LOCALES: tuple[str, ...] = ("ko", "ja", "en")
DEFAULT_LOCALE: Locale = "ja"

MESSAGES: dict[str, dict[str, str]] = {
    # Form validation
    "date_required": {
        "ko": "날짜를 선택해주세요",
        "ja": "日付を選択してください",
        "en": "Please select a date",
    },
    "date_out_of_window": {
        "ko": "{start}부터 {end} 사이의 날짜를 선택해주세요",
        "ja": "{start}から{end}の間の日付を選択してください",
        "en": "Please select a date between {start} and {end}",
    },
    "time_required": {
        "ko": "시간을 선택해주세요",
        "ja": "時間を選択してください",
        "en": "Please select a time",
    },
    "time_invalid": {
        "ko": "선택할 수 없는 시간입니다",
        "ja": "選択できない時間です",
        "en": "This time slot is not available",
    },
    "party_size_invalid": {
        "ko": "인원은 {min}명에서 {max}명 사이여야 합니다",
        "ja": "人数は{min}名から{max}名の間で指定してください",
        "en": "Party size must be between {min} and {max}",
    },
    "name_required": {
        "ko": "이름을 입력해주세요",
        "ja": "お名前を入力してください",
        "en": "Please enter your name",
    },
    "phone_required": {
        "ko": "전화번호를 입력해주세요",
        "ja": "電話番号を入力してください",
        "en": "Please enter your phone number",
    },
    "email_required": {
        "ko": "이메일을 입력해주세요",
        "ja": "メールアドレスを入力してください",
        "en": "Please enter your e-mail address",
    },
    "email_invalid": {
        "ko": "유효한 이메일을 입력해주세요",
        "ja": "有効なメールアドレスを入力してください",
        "en": "Please enter a valid e-mail address",
    },
    "restaurant_required": {
        "ko": "레스토랑을 선택하거나 이름을 입력해주세요",
        "ja": "レストランを選択するか、名前を入力してください",
        "en": "Please choose a restaurant or enter its name",
    },
    "restaurant_url_invalid": {
        "ko": "올바른 URL을 입력해주세요",
        "ja": "正しいURLを入力してください",
        "en": "Please enter a valid URL",
    },
    "input_suspicious": {
        "ko": "허용되지 않는 내용이 포함되어 있습니다",
        "ja": "使用できない内容が含まれています",
        "en": "This field contains content that is not allowed",
    },
    "input_too_long": {
        "ko": "{max}자 이내로 입력해주세요",
        "ja": "{max}文字以内で入力してください",
        "en": "Please use at most {max} characters",
    },
    "validation_failed": {
        "ko": "입력 내용을 확인해주세요",
        "ja": "入力内容をご確認ください",
        "en": "Please check the highlighted fields",
    },
    "rate_limited": {
        "ko": "요청이 너무 많습니다. 잠시 후 다시 시도해주세요.",
        "ja": "リクエストが多すぎます。しばらくしてからもう一度お試しください。",
        "en": "Too many requests. Please try again later.",
    },
    # Payment gateway
    "gateway_blocked": {
        "ko": "결제 시스템을 불러올 수 없습니다. 광고 차단기를 끄거나 다른 결제 방법을 이용해주세요.",
        "ja": "決済システムを読み込めませんでした。広告ブロッカーを無効にするか、別のお支払い方法をご利用ください。",
        "en": "The payment system could not be loaded. Disable your ad blocker or use an alternative payment method.",
    },
    "gateway_timeout": {
        "ko": "결제 서버에 연결할 수 없습니다. 다시 시도해주세요.",
        "ja": "決済サーバーに接続できませんでした。もう一度お試しください。",
        "en": "Could not connect to the payment server. Please try again.",
    },
    "gateway_rejected": {
        "ko": "결제 처리 중 오류가 발생했습니다",
        "ja": "決済処理中にエラーが発生しました",
        "en": "An error occurred during payment processing",
    },
    "capture_failed": {
        "ko": "결제가 승인되지 않았습니다. 다시 시도해주세요.",
        "ja": "決済が承認されませんでした。もう一度お試しください。",
        "en": "The payment was not approved. Please try again.",
    },
    "capture_limit": {
        "ko": "결제 시도 횟수를 초과했습니다. 다른 결제 방법을 이용해주세요.",
        "ja": "決済の試行回数を超えました。別のお支払い方法をご利用ください。",
        "en": "Too many payment attempts. Please use an alternative payment method.",
    },
    # Store
    "store_failed_after_payment": {
        "ko": "결제는 완료되었으나 예약을 저장하지 못했습니다. 거래 번호 {reference}와 함께 고객센터에 문의해주세요.",
        "ja": "お支払いは完了しましたが、予約を保存できませんでした。取引番号 {reference} を添えてサポートまでご連絡ください。",
        "en": "Your payment was taken but the reservation could not be saved. Please contact support with reference {reference}.",
    },
    "store_failed": {
        "ko": "예약 중 오류가 발생했습니다. 다시 시도해주세요.",
        "ja": "予約中にエラーが発生しました。もう一度お試しください。",
        "en": "An error occurred while saving. Please try again.",
    },
    "reservation_not_found": {
        "ko": "예약을 찾을 수 없습니다",
        "ja": "予約が見つかりません",
        "en": "Reservation not found",
    },
    # Notifications
    "email_failed": {
        "ko": "확인 메일을 보내지 못했습니다. 다시 보내기를 눌러주세요.",
        "ja": "確認メールを送信できませんでした。再送信をお試しください。",
        "en": "The confirmation e-mail could not be sent. Please use resend.",
    },
    # Workflow
    "invalid_transition": {
        "ko": "이미 처리된 요청입니다",
        "ja": "このリクエストは既に処理されています",
        "en": "This request has already been processed",
    },
    "cancel_reason_required": {
        "ko": "취소 사유를 입력해주세요",
        "ja": "キャンセル理由を入力してください",
        "en": "Please enter a cancellation reason",
    },
}

EMAIL_SUBJECTS: dict[str, dict[str, str]] = {
    "confirmation": {
        "ko": "예약 확인: {restaurant}",
        "ja": "予約確認: {restaurant}",
        "en": "Reservation Confirmation: {restaurant}",
    },
    "cancellation": {
        "ko": "예약 취소 확인: {restaurant}",
        "ja": "予約キャンセル確認: {restaurant}",
        "en": "Reservation Cancellation: {restaurant}",
    },
}

EMAIL_GREETINGS: dict[str, dict[str, str]] = {
    "confirmation": {
        "ko": "{name}님, 예약해 주셔서 감사합니다!",
        "ja": "{name}様、ご予約ありがとうございます！",
        "en": "Dear {name}, thank you for your reservation!",
    },
    "cancellation": {
        "ko": "{name}님, 예약이 취소되었습니다.",
        "ja": "{name}様、ご予約がキャンセルされました。",
        "en": "Dear {name}, your reservation has been cancelled.",
    },
}


def normalize_locale(locale: str | None) -> Locale:
    """Map an arbitrary locale tag to one of the supported locales."""
    if not locale:
        return DEFAULT_LOCALE
    short = locale.strip().lower().replace("_", "-").split("-")[0]
    if short in SUPPORTED_LOCALES:
        return short  # type: ignore[return-value]
    return DEFAULT_LOCALE


def translate(key: str, locale: str | None = None, **params) -> str:
    """Look up a message for the locale, falling back to Japanese then English.

    Args:
        key: Message key in ``MESSAGES``
        locale: Requested locale
        **params: Format parameters for the message template

    Returns:
        Localized message, or the key itself if unknown
    """
    table = MESSAGES.get(key)
    if table is None:
        return key
    loc = normalize_locale(locale)
    template = table.get(loc) or table.get(DEFAULT_LOCALE) or table["en"]
    return template.format(**params) if params else template
