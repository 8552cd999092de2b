from rest_framework import serializers


class LoginSerializer(serializers.Serializer):
    username = serializers.CharField(required=False, allow_blank=True)
    email = serializers.CharField(required=False, allow_blank=True)
    password = serializers.CharField(trim_whitespace=False)

    def validate(self, attrs):
        username = (attrs.get('username') or attrs.get('email') or '').strip()
        if not username:
            raise serializers.ValidationError({'username': ['Username or email is required.']})
        attrs['username'] = username
        return attrs

    def validate_password(self, v):
        if not v:
            raise serializers.ValidationError('Password is required.')
        return v


class RefreshSerializer(serializers.Serializer):
    refresh = serializers.CharField()


class LogoutSerializer(serializers.Serializer):
    refresh = serializers.CharField(required=False, allow_blank=True)


class UserCreateSerializer(serializers.Serializer):
    username = serializers.CharField(max_length=150)
    password = serializers.CharField(write_only=True, trim_whitespace=False)
    email = serializers.EmailField(required=False, allow_blank=True)
    first_name = serializers.CharField(required=False, allow_blank=True, max_length=150)
    last_name = serializers.CharField(required=False, allow_blank=True, max_length=150)
    role = serializers.ChoiceField(choices=['admin', 'doctor', 'reception', 'staff', 'supervisor',
                                            'patient', 'guardian'])
    phone = serializers.CharField(required=False, allow_blank=True, max_length=32)
    specialty = serializers.CharField(required=False, allow_blank=True, max_length=128)
    center_id = serializers.CharField(required=False, allow_blank=True, max_length=32)


class UserUpdateSerializer(serializers.Serializer):
    email = serializers.EmailField(required=False, allow_blank=True)
    first_name = serializers.CharField(required=False, allow_blank=True, max_length=150)
    last_name = serializers.CharField(required=False, allow_blank=True, max_length=150)
    role = serializers.ChoiceField(required=False, choices=['admin', 'doctor', 'reception', 'staff',
                                                            'supervisor', 'patient', 'guardian'])
    phone = serializers.CharField(required=False, allow_blank=True, max_length=32)
    specialty = serializers.CharField(required=False, allow_blank=True, max_length=128)
    is_active = serializers.BooleanField(required=False)
    password = serializers.CharField(required=False, write_only=True, trim_whitespace=False)
