"""
Subscription billing.

- state: subscription state machine and the lazy grace-period check
- lifecycle: SubscriptionLifecycle (trials, cancellation, provider reconciliation)
- events: parsing of provider webhook payloads into snapshots
- signature: webhook verification through the stripe SDK
- provider_client: pulls current subscriptions from Stripe for reconciliation
"""
